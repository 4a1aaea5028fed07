import asyncio

import httpx
import structlog

from aiusage.aggregator import (
    DEFAULT_REFRESH_INTERVAL_SECONDS,
    UsageAggregator,
    sort_for_display,
)
from aiusage.auth.device_flow import GITHUB_COPILOT_CLIENT_ID, DeviceFlowClient
from aiusage.auth.manager import AuthenticationManager
from aiusage.config import Config
from aiusage.config_store import ConfigStore, JsonConfigStore, ProviderConfigMap
from aiusage.errors import ConfigError
from aiusage.metrics import MetricsUpdater
from aiusage.models import (
    DeviceFlowResponse,
    Preferences,
    ProviderConfig,
    TokenPollResult,
    UsageRecord,
)
from aiusage.privacy import mask_record
from aiusage.registry import ProviderRegistry, default_registry
from aiusage.usage_cache import UsageCache

logger = structlog.get_logger()


class UsageTracker:
    """
    UsageTracker is the single object a UI or service talks to. It
    owns the config store, the login state and the aggregator, and
    keeps them consistent with each other.
    """

    def __init__(
        self,
        config_store: "ConfigStore",
        client: "httpx.AsyncClient | None" = None,
        registry: "ProviderRegistry | None" = None,
        github_client_id: "str" = GITHUB_COPILOT_CLIENT_ID,
        provider_timeout: "float" = 10.0,
        cache_ttl: "float" = 120.0,
        metrics: "MetricsUpdater | None" = None,
    ) -> "None":
        self._client = client or httpx.AsyncClient(timeout=10.0)
        self._config_store = config_store
        self._device_flow = DeviceFlowClient(self._client, client_id=github_client_id)
        self._auth = AuthenticationManager(self._device_flow, config_store)
        self._registry = registry or default_registry(
            client=self._client, token_source=self._device_flow
        )
        self._cache = UsageCache(ttl_seconds=cache_ttl)
        self._aggregator = UsageAggregator(
            self._registry,
            config_store,
            cache=self._cache,
            provider_timeout=provider_timeout,
            metrics=metrics,
        )
        self._auth.initialize_from_config()

    @classmethod
    def from_config(
        cls,
        config: "Config",
        metrics: "MetricsUpdater | None" = None,
    ) -> "UsageTracker":
        return cls(
            JsonConfigStore(config.expanded_config_path),
            github_client_id=config.github_client_id,
            provider_timeout=config.provider_timeout,
            cache_ttl=config.cache_ttl,
            metrics=metrics,
        )

    @property
    def aggregator(self) -> "UsageAggregator":
        return self._aggregator

    async def get_all_usage(self, force_refresh: "bool" = False) -> "list[UsageRecord]":
        return await self._aggregator.get_all_usage(force_refresh=force_refresh)

    async def get_display_usage(
        self, force_refresh: "bool" = False
    ) -> "list[UsageRecord]":
        """
        usage as status views show it: sorted by provider name, with
        account names and emails masked when privacy_mode is on.
        """
        records = sort_for_display(await self.get_all_usage(force_refresh))
        if self._privacy_mode():
            records = [mask_record(r) for r in records]
        return records

    def refresh_interval(self, override: "int | None" = None) -> "int":
        """
        seconds between refresh cycles. An explicit override wins over
        the saved preference.
        """
        if override is not None:
            return override
        try:
            return self._config_store.load_preferences().refresh_interval_seconds
        except ConfigError:
            logger.exception("preferences_load_failed")
            return DEFAULT_REFRESH_INTERVAL_SECONDS

    def _privacy_mode(self) -> "bool":
        try:
            return self._config_store.load_preferences().privacy_mode
        except ConfigError:
            logger.exception("preferences_load_failed")
            # mask when the preference cannot be read
            return True

    def load_config(self) -> "list[ProviderConfig]":
        return self._config_store.load_config()

    def save_provider_config(self, config: "ProviderConfig") -> "None":
        """
        adds or replaces the entry for config.provider_id and drops any
        cached results for it. Editing the login provider's entry
        also updates the live token.
        """
        configs = ProviderConfigMap(self._config_store.load_config())
        configs.upsert(config)
        self._config_store.save_config(configs.to_list())
        self._cache.invalidate(config.provider_id)
        if config.provider_id == self._auth.provider_id:
            self._auth.sync_from_config()
        logger.info("provider_config_saved", provider_id=config.provider_id)

    def remove_provider_config(self, provider_id: "str") -> "bool":
        configs = ProviderConfigMap(self._config_store.load_config())
        if not configs.remove(provider_id):
            return False
        self._config_store.save_config(configs.to_list())
        self._cache.invalidate(provider_id)
        if provider_id == self._auth.provider_id:
            self._auth.sync_from_config()
        logger.info("provider_config_removed", provider_id=provider_id)
        return True

    def load_preferences(self) -> "Preferences":
        return self._config_store.load_preferences()

    def save_preferences(self, preferences: "Preferences") -> "None":
        self._config_store.save_preferences(preferences)

    def is_authenticated(self) -> "bool":
        return self._auth.is_authenticated()

    def get_current_token(self) -> "str | None":
        return self._auth.get_current_token()

    async def initiate_login(self) -> "DeviceFlowResponse":
        return await self._auth.initiate_login()

    async def poll_for_token(self, device_code: "str") -> "TokenPollResult":
        return await self._auth.poll_for_token(device_code)

    async def wait_for_login(
        self,
        device_code: "str",
        interval: "float",
        max_attempts: "int | None" = None,
        cancel_event: "asyncio.Event | None" = None,
    ) -> "bool":
        ok = await self._auth.wait_for_login(
            device_code,
            interval,
            max_attempts=max_attempts,
            cancel_event=cancel_event,
        )
        # copilot results fetched anonymously are stale now
        self._cache.invalidate(self._auth.provider_id)
        return ok

    def cancel_login(self) -> "bool":
        return self._auth.cancel_login()

    def logout(self) -> "None":
        self._auth.logout()
        self._cache.invalidate(self._auth.provider_id)

    async def close(self) -> "None":
        """
        closes the shared HTTP client.
        """
        await self._registry.close()
        if not self._client.is_closed:
            await self._client.aclose()
