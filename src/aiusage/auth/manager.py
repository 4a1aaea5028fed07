import asyncio
import dataclasses

import structlog

from aiusage.auth.device_flow import DeviceFlowClient
from aiusage.config_store import ConfigStore, ProviderConfigMap
from aiusage.errors import ProtocolError
from aiusage.models import DeviceFlowResponse, PollStatus, ProviderConfig, TokenPollResult
from aiusage.provider.github_copilot import COPILOT_PROVIDER_ID

logger = structlog.get_logger()


class AuthenticationManager:
    """
    AuthenticationManager ties the device flow to the persisted
    configuration of the github-copilot provider.

    The token lives in two places: the config store and the
    DeviceFlowClient's memory. Writes always reach the store first and
    then memory within the same call, so is_authenticated() is never
    true without a saved token and never lags behind a saved one.
    """

    def __init__(
        self,
        device_flow: "DeviceFlowClient",
        config_store: "ConfigStore",
        provider_id: "str" = COPILOT_PROVIDER_ID,
    ) -> "None":
        self._device_flow = device_flow
        self._config_store = config_store
        self._provider_id = provider_id
        self._login_cancel: "asyncio.Event | None" = None

    @property
    def provider_id(self) -> "str":
        return self._provider_id

    def is_authenticated(self) -> "bool":
        return self._device_flow.is_authenticated()

    def get_current_token(self) -> "str | None":
        return self._device_flow.get_current_token()

    def initialize_from_config(self) -> "None":
        """
        loads a previously saved token into memory, if there is one.
        """
        config = ProviderConfigMap(self._config_store.load_config()).get(
            self._provider_id
        )
        if config is not None and config.api_key:
            self._device_flow.initialize_token(config.api_key)
            logger.info("auth_token_restored", provider_id=self._provider_id)

    def sync_from_config(self) -> "None":
        """
        makes the in-memory token match the saved one after the
        provider's config entry was edited or removed directly.
        """
        config = ProviderConfigMap(self._config_store.load_config()).get(
            self._provider_id
        )
        if config is not None and config.api_key:
            if config.api_key != self._device_flow.get_current_token():
                self._device_flow.initialize_token(config.api_key)
                logger.info("auth_token_updated", provider_id=self._provider_id)
        elif self._device_flow.is_authenticated():
            self._device_flow.logout()
            logger.info("auth_token_cleared", provider_id=self._provider_id)

    async def initiate_login(self) -> "DeviceFlowResponse":
        return await self._device_flow.initiate_device_flow()

    async def wait_for_login(
        self,
        device_code: "str",
        interval: "float",
        max_attempts: "int | None" = None,
        cancel_event: "asyncio.Event | None" = None,
    ) -> "bool":
        """
        runs the polling loop to completion and saves the token.

        Terminal failures raise the matching ProtocolError subclass,
        so callers can tell expiry, denial and cancellation apart.
        cancel_login() stops the loop from another task.
        """
        cancel_event = cancel_event or asyncio.Event()
        self._login_cancel = cancel_event
        try:
            token = await self._device_flow.complete_device_flow(
                device_code,
                interval,
                max_attempts=max_attempts,
                cancel_event=cancel_event,
            )
        except ProtocolError as e:
            logger.warning("device_flow_not_completed", reason=str(e))
            raise
        finally:
            self._login_cancel = None

        self.save_token(token)
        return True

    def cancel_login(self) -> "bool":
        """
        stops an in-flight wait_for_login. Returns False when no login
        is being waited on.
        """
        if self._login_cancel is None:
            return False
        self._login_cancel.set()
        return True

    async def poll_for_token(self, device_code: "str") -> "TokenPollResult":
        """
        single poll for callers that drive their own retry timer. A
        TOKEN result is saved before it is returned.
        """
        result = await self._device_flow.poll_once(device_code)
        if result.status is PollStatus.TOKEN and result.token:
            self.save_token(result.token)
        return result

    def logout(self) -> "None":
        """
        forgets the token in memory and blanks the saved api_key. The
        config entry itself stays so its other settings survive.
        """
        self._device_flow.logout()

        configs = ProviderConfigMap(self._config_store.load_config())
        existing = configs.get(self._provider_id)
        if existing is None:
            return

        configs.upsert(dataclasses.replace(existing, api_key=""))
        self._config_store.save_config(configs.to_list())
        logger.info("auth_logged_out", provider_id=self._provider_id)

    def save_token(self, token: "str") -> "None":
        """
        upserts the token into the provider's config entry, then makes
        it the live token. If saving raises, memory is left unchanged.
        """
        configs = ProviderConfigMap(self._config_store.load_config())
        existing = configs.get(self._provider_id)
        if existing is not None:
            configs.upsert(dataclasses.replace(existing, api_key=token))
        else:
            configs.upsert(
                ProviderConfig(
                    provider_id=self._provider_id,
                    api_key=token,
                    show_in_tray=True,
                )
            )

        self._config_store.save_config(configs.to_list())
        self._device_flow.initialize_token(token)
        logger.info("auth_token_saved", provider_id=self._provider_id)
