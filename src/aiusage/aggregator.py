import asyncio
import dataclasses
import time
from typing import Iterable, Sequence

import structlog

from aiusage.config_store import ConfigStore, ProviderConfigMap
from aiusage.errors import ConfigError
from aiusage.metrics import MetricsUpdater
from aiusage.models import ProviderConfig, UsageRecord
from aiusage.privacy import mask_record
from aiusage.registry import ProviderRegistry
from aiusage.usage_cache import UsageCache

logger = structlog.get_logger()

DEFAULT_PROVIDER_TIMEOUT_SECONDS = 10.0
DEFAULT_REFRESH_INTERVAL_SECONDS = 300


def sort_for_display(records: "Iterable[UsageRecord]") -> "list[UsageRecord]":
    """
    orders records the way status views list them, case-insensitively
    by provider name.
    """
    return sorted(records, key=lambda r: r.provider_name.casefold())


class UsageAggregator:
    """
    UsageAggregator fans out one fetch per configured provider and
    merges the results into a single list, in config order.

    It never raises. Providers that fail, time out or are missing
    degrade to an unavailable record, so every configured provider
    is represented in the result. Results are cached for a short TTL,
    and a fetch already running for a provider id is joined instead
    of being issued twice. run() drives the periodic refresh loop.
    """

    def __init__(
        self,
        registry: "ProviderRegistry",
        config_store: "ConfigStore",
        cache: "UsageCache | None" = None,
        provider_timeout: "float" = DEFAULT_PROVIDER_TIMEOUT_SECONDS,
        overall_timeout: "float | None" = None,
        metrics: "MetricsUpdater | None" = None,
    ) -> "None":
        self._registry = registry
        self._config_store = config_store
        self._cache = cache if cache is not None else UsageCache()
        self._provider_timeout = provider_timeout
        # leave room for the slowest provider plus scheduling slack
        self._overall_timeout = (
            overall_timeout if overall_timeout is not None else provider_timeout + 5.0
        )
        self._metrics = metrics
        self._in_flight: "dict[str, asyncio.Task[list[UsageRecord]]]" = {}
        self._stop_event: "asyncio.Event" = asyncio.Event()

    @property
    def cache(self) -> "UsageCache":
        return self._cache

    async def get_all_usage(self, force_refresh: "bool" = False) -> "list[UsageRecord]":
        """
        fetches usage for every provider in the config store.
        force_refresh skips cached results but still refreshes them.
        """
        try:
            configs = self._config_store.load_config()
        except ConfigError:
            logger.exception("config_load_failed")
            return []
        return await self.fetch_usage(configs, force_refresh=force_refresh)

    async def fetch_usage(
        self,
        configs: "Sequence[ProviderConfig]",
        force_refresh: "bool" = False,
    ) -> "list[UsageRecord]":
        """
        fetches usage for the given configs concurrently. Providers
        still running when the overall deadline passes are cancelled
        and reported as timed out.
        """
        unique = ProviderConfigMap(configs).to_list()
        if not unique:
            return []

        tasks = [
            asyncio.ensure_future(self._usage_for(config, force_refresh))
            for config in unique
        ]
        done, pending = await asyncio.wait(tasks, timeout=self._overall_timeout)
        for task in pending:
            task.cancel()

        records: "list[UsageRecord]" = []
        for config, task in zip(unique, tasks):
            if task in done and not task.cancelled() and task.exception() is None:
                records.extend(task.result())
                continue

            if task in done and not task.cancelled():
                logger.error(
                    "provider_task_failed",
                    provider_id=config.provider_id,
                    error=repr(task.exception()),
                )
                records.append(self._degraded(config, "Unexpected error"))
            else:
                records.append(self._degraded(config, "Timeout"))
        return records

    async def _usage_for(
        self,
        config: "ProviderConfig",
        force_refresh: "bool",
    ) -> "list[UsageRecord]":
        pid = config.provider_id
        fingerprint = config.fingerprint()

        if not force_refresh:
            cached = self._cache.get(pid, fingerprint)
            if cached is not None:
                logger.debug("usage_cache_hit", provider_id=pid)
                return cached

        # a manual refresh racing the refresh loop joins the running fetch
        task = self._in_flight.get(pid)
        if task is None:
            task = asyncio.ensure_future(self._fetch(config, fingerprint))
            self._in_flight[pid] = task
            task.add_done_callback(lambda _t: self._in_flight.pop(pid, None))
        else:
            logger.debug("joining_in_flight_fetch", provider_id=pid)

        # shielded so one caller's deadline does not cancel the fetch
        # for other callers waiting on it
        return list(await asyncio.shield(task))

    async def _fetch(
        self,
        config: "ProviderConfig",
        fingerprint: "str",
    ) -> "list[UsageRecord]":
        pid = config.provider_id
        provider = self._registry.resolve(pid)
        if provider is None:
            return [self._degraded(config, "Unsupported provider")]

        # each provider gets its own copy of the config
        snapshot = dataclasses.replace(
            config, enabled_sub_trays=list(config.enabled_sub_trays)
        )

        start = time.monotonic()
        try:
            records = list(
                await asyncio.wait_for(
                    provider.fetch_usage(snapshot), timeout=self._provider_timeout
                )
            )
        except TimeoutError:
            logger.warning(
                "provider_fetch_timeout",
                provider_id=pid,
                timeout=self._provider_timeout,
            )
            records = [self._degraded(config, "Timeout")]
        except Exception:
            # providers must not raise, but one bad integration cannot
            # be allowed to take the others down
            logger.exception("provider_fetch_crashed", provider_id=pid)
            records = [self._degraded(config, "Unexpected error")]

        if not records:
            records = [self._degraded(config, "No usage data")]

        if self._metrics is not None:
            self._metrics.observe_fetch_duration(pid, time.monotonic() - start)

        for record in records:
            if not record.is_available:
                logger.info(
                    "provider_fetch_degraded",
                    provider_id=record.provider_id,
                    description=mask_record(record).description,
                )
                if self._metrics is not None:
                    self._metrics.inc_degraded(record.provider_id)
            if self._metrics is not None:
                self._metrics.update_usage(record)

        self._cache.put(pid, fingerprint, records)
        return records

    def _degraded(self, config: "ProviderConfig", description: "str") -> "UsageRecord":
        return UsageRecord.unavailable(
            config.provider_id,
            config.provider_id,
            description,
            payment_type=config.payment_type,
            auth_source=config.auth_source,
        )

    def stop(self) -> "None":
        """
        signals the refresh loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def run(
        self,
        interval: "float" = DEFAULT_REFRESH_INTERVAL_SECONDS,
    ) -> "None":
        """
        runs the periodic refresh loop until stop() is called.
        """
        while not self._stop_event.is_set():
            logger.info("refresh_cycle_start")

            evicted = self._cache.evict_expired()
            if evicted:
                logger.debug("usage_cache_evicted", count=evicted)

            records = await self.get_all_usage(force_refresh=True)
            if self._metrics is not None:
                self._metrics.set_last_refresh(time.time())

            logger.info(
                "refresh_cycle_end",
                providers=len(records),
                degraded=sum(1 for r in records if not r.is_available),
            )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=interval)
            except TimeoutError:
                pass
