import asyncio
import json
from pathlib import Path

import pytest
from prometheus_client import CollectorRegistry

from aiusage.aggregator import UsageAggregator, sort_for_display
from aiusage.config_store import InMemoryConfigStore, JsonConfigStore
from aiusage.errors import ConfigError
from aiusage.metrics import MetricsUpdater
from aiusage.models import ProviderConfig, UsageRecord
from aiusage.registry import ProviderRegistry


class StaticProvider:
    """
    A mock provider that returns one available record per call.
    """

    def __init__(self, provider_id: "str", delay: "float" = 0.0) -> "None":
        self._provider_id = provider_id
        self._delay = delay
        self.calls = 0

    @property
    def provider_id(self) -> "str":
        return self._provider_id

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        self.calls += 1
        if self._delay:
            await asyncio.sleep(self._delay)
        return [
            UsageRecord(
                provider_id=config.provider_id,
                provider_name=config.provider_id.title(),
                usage_percentage=10.0,
                cost_used=1.0,
                cost_limit=10.0,
            )
        ]


class FailingProvider:
    """
    A mock provider that breaks the never-raise contract.
    """

    @property
    def provider_id(self) -> "str":
        return "failing"

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        raise RuntimeError("usage fetch failed")


class EmptyProvider:
    @property
    def provider_id(self) -> "str":
        return "empty"

    async def fetch_usage(self, config: "ProviderConfig") -> "list[UsageRecord]":
        return []


class BrokenStore(InMemoryConfigStore):
    def load_config(self) -> "list[ProviderConfig]":
        raise ConfigError("unreadable")


def _store(*provider_ids: "str") -> "InMemoryConfigStore":
    return InMemoryConfigStore(
        [ProviderConfig(provider_id=pid, api_key="k") for pid in provider_ids]
    )


class TestGetAllUsage:
    @pytest.mark.asyncio
    async def test_one_record_per_provider_in_config_order(self) -> "None":
        registry = ProviderRegistry(
            [StaticProvider("beta"), StaticProvider("alpha"), FailingProvider()]
        )
        aggregator = UsageAggregator(registry, _store("beta", "failing", "alpha"))

        records = await aggregator.get_all_usage()

        assert [r.provider_id for r in records] == ["beta", "failing", "alpha"]
        assert records[0].is_available
        assert not records[1].is_available
        assert records[1].description == "Unexpected error"

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self) -> "None":
        registry = ProviderRegistry(
            [StaticProvider("fast"), StaticProvider("slow", delay=1.0)]
        )
        aggregator = UsageAggregator(
            registry, _store("fast", "slow"), provider_timeout=0.05
        )

        records = await aggregator.get_all_usage()

        assert records[0].is_available
        assert not records[1].is_available
        assert records[1].description == "Timeout"

    @pytest.mark.asyncio
    async def test_overall_deadline_cancels_stragglers(self) -> "None":
        registry = ProviderRegistry(
            [StaticProvider("fast"), StaticProvider("slow", delay=1.0)]
        )
        aggregator = UsageAggregator(
            registry,
            _store("fast", "slow"),
            provider_timeout=0.2,
            overall_timeout=0.05,
        )

        records = await aggregator.get_all_usage()

        assert records[1].description == "Timeout"
        assert records[0].is_available
        # let the shielded fetch run into its own timeout
        await asyncio.sleep(0.3)

    @pytest.mark.asyncio
    async def test_every_provider_failing_still_yields_a_record_each(self) -> "None":
        registry = ProviderRegistry([FailingProvider(), EmptyProvider()])
        aggregator = UsageAggregator(registry, _store("failing", "empty", "nobody"))

        records = await aggregator.get_all_usage()

        assert [r.description for r in records] == [
            "Unexpected error",
            "No usage data",
            "Unsupported provider",
        ]
        assert not any(r.is_available for r in records)

    @pytest.mark.asyncio
    async def test_unknown_ids_use_the_fallback(self) -> "None":
        fallback = StaticProvider("generic")
        aggregator = UsageAggregator(
            ProviderRegistry([], fallback=fallback), _store("kimi")
        )

        records = await aggregator.get_all_usage()

        assert records[0].provider_id == "kimi"
        assert records[0].is_available
        assert fallback.calls == 1

    @pytest.mark.asyncio
    async def test_config_error_returns_empty_list(self) -> "None":
        aggregator = UsageAggregator(ProviderRegistry([]), BrokenStore())
        assert await aggregator.get_all_usage() == []

    @pytest.mark.asyncio
    async def test_malformed_config_file_returns_empty_list(
        self, tmp_path: "Path"
    ) -> "None":
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"providers": ["oops"]}))
        aggregator = UsageAggregator(ProviderRegistry([]), JsonConfigStore(path))
        assert await aggregator.get_all_usage() == []

    @pytest.mark.asyncio
    async def test_no_configs(self) -> "None":
        aggregator = UsageAggregator(ProviderRegistry([]), InMemoryConfigStore())
        assert await aggregator.get_all_usage() == []


class TestCaching:
    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self) -> "None":
        provider = StaticProvider("alpha")
        aggregator = UsageAggregator(ProviderRegistry([provider]), _store("alpha"))

        await aggregator.get_all_usage()
        records = await aggregator.get_all_usage()

        assert provider.calls == 1
        assert records[0].is_available

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self) -> "None":
        provider = StaticProvider("alpha")
        aggregator = UsageAggregator(ProviderRegistry([provider]), _store("alpha"))

        await aggregator.get_all_usage()
        await aggregator.get_all_usage(force_refresh=True)

        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_changed_config_misses_cache(self) -> "None":
        provider = StaticProvider("alpha")
        store = _store("alpha")
        aggregator = UsageAggregator(ProviderRegistry([provider]), store)

        await aggregator.get_all_usage()
        store.save_config([ProviderConfig(provider_id="alpha", api_key="other")])
        await aggregator.get_all_usage()

        assert provider.calls == 2

    @pytest.mark.asyncio
    async def test_overlapping_refreshes_share_one_fetch(self) -> "None":
        provider = StaticProvider("alpha", delay=0.05)
        aggregator = UsageAggregator(ProviderRegistry([provider]), _store("alpha"))

        first, second = await asyncio.gather(
            aggregator.get_all_usage(force_refresh=True),
            aggregator.get_all_usage(force_refresh=True),
        )

        assert provider.calls == 1
        assert first == second


class TestMetrics:
    @pytest.mark.asyncio
    async def test_records_update_metrics(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        aggregator = UsageAggregator(
            ProviderRegistry([StaticProvider("alpha"), FailingProvider()]),
            _store("alpha", "failing"),
            metrics=MetricsUpdater(registry=registry),
        )

        await aggregator.get_all_usage()

        assert (
            registry.get_sample_value(
                "aiusage_provider_available", {"provider_id": "alpha"}
            )
            == 1.0
        )
        assert (
            registry.get_sample_value(
                "aiusage_fetch_degraded_total", {"provider_id": "failing"}
            )
            == 1.0
        )


class TestRunLoop:
    @pytest.mark.asyncio
    async def test_stop_ends_the_loop(
        self,
        registry: "CollectorRegistry",
    ) -> "None":
        provider = StaticProvider("alpha")
        aggregator = UsageAggregator(
            ProviderRegistry([provider]),
            _store("alpha"),
            metrics=MetricsUpdater(registry=registry),
        )

        task = asyncio.create_task(aggregator.run(interval=60))
        await asyncio.sleep(0.05)
        aggregator.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert provider.calls == 1
        assert (
            registry.get_sample_value("aiusage_last_refresh_timestamp_seconds")
            is not None
        )


class TestSortForDisplay:
    def test_sorts_case_insensitively(self) -> "None":
        records = [
            UsageRecord(provider_id="b", provider_name="beta"),
            UsageRecord(provider_id="a", provider_name="Alpha"),
            UsageRecord(provider_id="c", provider_name="Gamma"),
        ]
        assert [r.provider_name for r in sort_for_display(records)] == [
            "Alpha",
            "beta",
            "Gamma",
        ]
