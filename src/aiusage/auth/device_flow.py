import asyncio
import enum
import threading

import httpx
import structlog

from aiusage.errors import (
    AccessDeniedError,
    DeviceFlowCancelledError,
    DeviceFlowExpiredError,
    DeviceFlowTimeoutError,
    ProtocolError,
)
from aiusage.models import DeviceFlowResponse, PollStatus, TokenPollResult

logger = structlog.get_logger()

GITHUB_DEVICE_CODE_URL = "https://github.com/login/device/code"
GITHUB_ACCESS_TOKEN_URL = "https://github.com/login/oauth/access_token"
# public client id of the Copilot editor integrations
GITHUB_COPILOT_CLIENT_ID = "Iv1.b507a08c87ecfe98"
DEVICE_CODE_GRANT_TYPE = "urn:ietf:params:oauth:grant-type:device_code"

# RFC 8628 asks clients to add 5 seconds on every slow_down
SLOW_DOWN_STEP_SECONDS = 5

_ERROR_CODES: "dict[str, TokenPollResult]" = {
    "authorization_pending": TokenPollResult.pending(),
    "slow_down": TokenPollResult.slow_down(),
    "expired_token": TokenPollResult.expired(),
    "access_denied": TokenPollResult.access_denied(),
}


class DeviceFlowState(enum.Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    POLLING = "polling"
    AUTHENTICATED = "authenticated"
    EXPIRED = "expired"
    DENIED = "denied"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeviceFlowClient:
    """
    DeviceFlowClient speaks the OAuth 2.0 Device Authorization Grant
    (RFC 8628) against one identity provider and holds the current
    token in memory.

    Persisting the token is up to the caller. complete_device_flow
    hands the token back without storing it, so the caller can save
    it before calling initialize_token.
    """

    def __init__(
        self,
        client: "httpx.AsyncClient",
        client_id: "str" = GITHUB_COPILOT_CLIENT_ID,
        scope: "str" = "read:user",
        device_code_url: "str" = GITHUB_DEVICE_CODE_URL,
        access_token_url: "str" = GITHUB_ACCESS_TOKEN_URL,
        slow_down_step: "float" = SLOW_DOWN_STEP_SECONDS,
    ) -> "None":
        self._client = client
        self._client_id = client_id
        self._scope = scope
        self._device_code_url = device_code_url
        self._access_token_url = access_token_url
        self._slow_down_step = slow_down_step
        self._lock: "threading.Lock" = threading.Lock()
        self._token: "str | None" = None
        self.state: "DeviceFlowState" = DeviceFlowState.IDLE

    def is_authenticated(self) -> "bool":
        return bool(self._token)

    def get_current_token(self) -> "str | None":
        return self._token

    def initialize_token(self, token: "str") -> "None":
        with self._lock:
            self._token = token
            self.state = DeviceFlowState.AUTHENTICATED

    def logout(self) -> "None":
        """
        forgets the in-memory token. The persisted copy is left alone.
        """
        with self._lock:
            self._token = None
            self.state = DeviceFlowState.IDLE

    async def initiate_device_flow(self) -> "DeviceFlowResponse":
        """
        requests a device and user code. Transport failures and
        malformed responses raise ProtocolError.
        """
        try:
            resp = await self._client.post(
                self._device_code_url,
                data={"client_id": self._client_id, "scope": self._scope},
                headers={"Accept": "application/json"},
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            self.state = DeviceFlowState.FAILED
            raise ProtocolError(f"device code request failed: {e}") from e
        except ValueError as e:
            self.state = DeviceFlowState.FAILED
            raise ProtocolError("device code response is not JSON") from e

        try:
            response = DeviceFlowResponse(
                device_code=body["device_code"],
                user_code=body["user_code"],
                verification_uri=body["verification_uri"],
                interval=int(body.get("interval", 5)),
                expires_in=int(body.get("expires_in", 900)),
            )
        except (KeyError, TypeError, ValueError) as e:
            self.state = DeviceFlowState.FAILED
            raise ProtocolError(f"malformed device code response: {e}") from e

        self.state = DeviceFlowState.INITIATED
        logger.info(
            "device_flow_initiated",
            verification_uri=response.verification_uri,
            interval=response.interval,
            expires_in=response.expires_in,
        )
        return response

    async def poll_once(self, device_code: "str") -> "TokenPollResult":
        """
        performs a single token request and maps the answer onto a
        TokenPollResult. Never raises.
        """
        try:
            resp = await self._client.post(
                self._access_token_url,
                data={
                    "client_id": self._client_id,
                    "device_code": device_code,
                    "grant_type": DEVICE_CODE_GRANT_TYPE,
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            return TokenPollResult.error(f"token request failed: {e}")

        try:
            body = resp.json()
        except ValueError:
            return TokenPollResult.error(
                f"unexpected token response ({resp.status_code})"
            )
        if not isinstance(body, dict):
            return TokenPollResult.error("unexpected token response")

        token = body.get("access_token")
        if token:
            return TokenPollResult.token_ok(str(token))

        error = body.get("error")
        if error in _ERROR_CODES:
            return _ERROR_CODES[error]

        message = body.get("error_description") or error or f"HTTP {resp.status_code}"
        return TokenPollResult.error(str(message))

    # GitHub's naming for the same exchange
    poll_for_token = poll_once

    async def _wait(self, cancel_event: "asyncio.Event", interval: "float") -> "None":
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=interval)
        except TimeoutError:
            pass

    async def complete_device_flow(
        self,
        device_code: "str",
        interval: "float",
        max_attempts: "int | None" = None,
        cancel_event: "asyncio.Event | None" = None,
    ) -> "str":
        """
        polls until the flow reaches a terminal state and returns the
        access token.

        Every poll is preceded by a wait of `interval` seconds, which
        the cancel event cuts short. A cancel that lands while a poll is
        in flight wins over that poll's result. slow_down stretches the
        interval; expiry, denial and any other error end the loop at once.
        """
        cancel_event = cancel_event or asyncio.Event()
        attempts = 0
        self.state = DeviceFlowState.POLLING

        while max_attempts is None or attempts < max_attempts:
            await self._wait(cancel_event, interval)

            if cancel_event.is_set():
                self.state = DeviceFlowState.CANCELLED
                logger.info("device_flow_cancelled", attempts=attempts)
                raise DeviceFlowCancelledError("login cancelled")

            attempts += 1
            result = await self.poll_once(device_code)

            # a token granted after cancel_login is discarded
            if cancel_event.is_set():
                self.state = DeviceFlowState.CANCELLED
                logger.info("device_flow_cancelled", attempts=attempts)
                raise DeviceFlowCancelledError("login cancelled")

            if result.status is PollStatus.PENDING:
                continue

            if result.status is PollStatus.SLOW_DOWN:
                interval += self._slow_down_step
                logger.debug("device_flow_slow_down", interval=interval)
                continue

            if result.status is PollStatus.TOKEN and result.token:
                self.state = DeviceFlowState.AUTHENTICATED
                logger.info("device_flow_authenticated", attempts=attempts)
                return result.token

            if result.status is PollStatus.EXPIRED:
                self.state = DeviceFlowState.EXPIRED
                raise DeviceFlowExpiredError(result.message or "device code expired")

            if result.status is PollStatus.ACCESS_DENIED:
                self.state = DeviceFlowState.DENIED
                raise AccessDeniedError(result.message or "access denied")

            self.state = DeviceFlowState.FAILED
            logger.warning("device_flow_failed", reason=result.message)
            raise ProtocolError(result.message or "device flow failed")

        self.state = DeviceFlowState.FAILED
        raise DeviceFlowTimeoutError(f"no token after {attempts} attempts")
