import asyncio

import httpx
import pytest
import respx

from aiusage.auth.device_flow import (
    GITHUB_ACCESS_TOKEN_URL,
    GITHUB_DEVICE_CODE_URL,
    DeviceFlowClient,
    DeviceFlowState,
)
from aiusage.errors import (
    AccessDeniedError,
    DeviceFlowCancelledError,
    DeviceFlowExpiredError,
    DeviceFlowTimeoutError,
    ProtocolError,
)
from aiusage.models import PollStatus


def _token_response(**body: "object") -> "httpx.Response":
    return httpx.Response(200, json=body)


class TestInitiateDeviceFlow:
    @pytest.mark.asyncio
    @respx.mock
    async def test_parses_device_code_response(self) -> "None":
        route = respx.post(GITHUB_DEVICE_CODE_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "device_code": "dev-1",
                    "user_code": "ABCD-1234",
                    "verification_uri": "https://github.com/login/device",
                    "interval": 5,
                    "expires_in": 899,
                },
            )
        )
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client)
            response = await flow.initiate_device_flow()

        assert response.device_code == "dev-1"
        assert response.user_code == "ABCD-1234"
        assert response.expires_in == 899
        assert flow.state is DeviceFlowState.INITIATED
        sent = route.calls.last.request.content.decode()
        assert "client_id=Iv1.b507a08c87ecfe98" in sent
        assert "scope=read%3Auser" in sent

    @pytest.mark.asyncio
    @respx.mock
    async def test_http_error_raises_protocol_error(self) -> "None":
        respx.post(GITHUB_DEVICE_CODE_URL).mock(return_value=httpx.Response(500))
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client)
            with pytest.raises(ProtocolError):
                await flow.initiate_device_flow()
        assert flow.state is DeviceFlowState.FAILED

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_response_raises_protocol_error(self) -> "None":
        respx.post(GITHUB_DEVICE_CODE_URL).mock(
            return_value=httpx.Response(200, json={"user_code": "ABCD"})
        )
        async with httpx.AsyncClient() as client:
            with pytest.raises(ProtocolError):
                await DeviceFlowClient(client).initiate_device_flow()


class TestPollOnce:
    @pytest.mark.asyncio
    @respx.mock
    async def test_maps_known_error_codes(self) -> "None":
        respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            side_effect=[
                _token_response(error="authorization_pending"),
                _token_response(error="slow_down"),
                _token_response(error="expired_token"),
                _token_response(error="access_denied"),
            ]
        )
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client)
            statuses = [(await flow.poll_once("dev-1")).status for _ in range(4)]

        assert statuses == [
            PollStatus.PENDING,
            PollStatus.SLOW_DOWN,
            PollStatus.EXPIRED,
            PollStatus.ACCESS_DENIED,
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_token(self) -> "None":
        respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            return_value=_token_response(access_token="gho_abc", token_type="bearer")
        )
        async with httpx.AsyncClient() as client:
            result = await DeviceFlowClient(client).poll_once("dev-1")
        assert result.status is PollStatus.TOKEN
        assert result.token == "gho_abc"

    @pytest.mark.asyncio
    @respx.mock
    async def test_unknown_error_uses_description(self) -> "None":
        respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            return_value=_token_response(
                error="incorrect_client_credentials",
                error_description="The client_id is not valid.",
            )
        )
        async with httpx.AsyncClient() as client:
            result = await DeviceFlowClient(client).poll_once("dev-1")
        assert result.status is PollStatus.ERROR
        assert result.message == "The client_id is not valid."

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_never_raises(self) -> "None":
        respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            side_effect=httpx.ConnectError("boom")
        )
        async with httpx.AsyncClient() as client:
            result = await DeviceFlowClient(client).poll_once("dev-1")
        assert result.status is PollStatus.ERROR


class TestCompleteDeviceFlow:
    @pytest.mark.asyncio
    @respx.mock
    async def test_keeps_polling_through_pending_and_slow_down(self) -> "None":
        route = respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            side_effect=[
                _token_response(error="authorization_pending"),
                _token_response(error="slow_down"),
                _token_response(error="authorization_pending"),
                _token_response(access_token="gho_abc"),
            ]
        )
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client, slow_down_step=0)
            token = await flow.complete_device_flow("dev-1", interval=0)

        assert token == "gho_abc"
        assert route.call_count == 4
        assert flow.state is DeviceFlowState.AUTHENTICATED
        # persisting and activating the token is left to the caller
        assert flow.is_authenticated() is False

    @pytest.mark.asyncio
    @respx.mock
    async def test_expired_stops_immediately(self) -> "None":
        route = respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            side_effect=[
                _token_response(error="expired_token"),
                _token_response(access_token="never"),
            ]
        )
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client)
            with pytest.raises(DeviceFlowExpiredError):
                await flow.complete_device_flow("dev-1", interval=0)

        assert route.call_count == 1
        assert flow.state is DeviceFlowState.EXPIRED

    @pytest.mark.asyncio
    @respx.mock
    async def test_access_denied_stops_immediately(self) -> "None":
        respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            return_value=_token_response(error="access_denied")
        )
        async with httpx.AsyncClient() as client:
            with pytest.raises(AccessDeniedError):
                await DeviceFlowClient(client).complete_device_flow(
                    "dev-1", interval=0
                )

    @pytest.mark.asyncio
    @respx.mock
    async def test_other_errors_stop_immediately(self) -> "None":
        route = respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            return_value=_token_response(error="unsupported_grant_type")
        )
        async with httpx.AsyncClient() as client:
            with pytest.raises(ProtocolError):
                await DeviceFlowClient(client).complete_device_flow(
                    "dev-1", interval=0
                )
        assert route.call_count == 1

    @pytest.mark.asyncio
    @respx.mock
    async def test_gives_up_after_max_attempts(self) -> "None":
        route = respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            return_value=_token_response(error="authorization_pending")
        )
        async with httpx.AsyncClient() as client:
            with pytest.raises(DeviceFlowTimeoutError):
                await DeviceFlowClient(client).complete_device_flow(
                    "dev-1", interval=0, max_attempts=3
                )
        assert route.call_count == 3

    @pytest.mark.asyncio
    @respx.mock(assert_all_called=False)
    async def test_cancel_interrupts_the_wait(
        self, respx_mock: "respx.MockRouter"
    ) -> "None":
        route = respx_mock.post(GITHUB_ACCESS_TOKEN_URL).mock(
            return_value=_token_response(error="authorization_pending")
        )
        cancel = asyncio.Event()
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client)
            task = asyncio.create_task(
                flow.complete_device_flow("dev-1", interval=30, cancel_event=cancel)
            )
            await asyncio.sleep(0.01)
            cancel.set()
            with pytest.raises(DeviceFlowCancelledError):
                await asyncio.wait_for(task, timeout=1.0)

        assert route.call_count == 0
        assert flow.state is DeviceFlowState.CANCELLED

    @pytest.mark.asyncio
    @respx.mock
    async def test_slow_down_stretches_the_interval(
        self, monkeypatch: "pytest.MonkeyPatch"
    ) -> "None":
        respx.post(GITHUB_ACCESS_TOKEN_URL).mock(
            side_effect=[
                _token_response(error="slow_down"),
                _token_response(error="authorization_pending"),
                _token_response(error="slow_down"),
                _token_response(access_token="gho_abc"),
            ]
        )
        waits: "list[float]" = []

        async def _record_wait(
            cancel_event: "asyncio.Event", interval: "float"
        ) -> "None":
            waits.append(interval)

        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client, slow_down_step=5)
            monkeypatch.setattr(flow, "_wait", _record_wait)
            token = await flow.complete_device_flow("dev-1", interval=1)

        assert token == "gho_abc"
        assert waits == [1, 6, 6, 11]

    @pytest.mark.asyncio
    @respx.mock
    async def test_cancel_during_poll_discards_the_token(self) -> "None":
        cancel = asyncio.Event()

        def _grant_after_cancel(request: "httpx.Request") -> "httpx.Response":
            cancel.set()
            return _token_response(access_token="gho_late")

        respx.post(GITHUB_ACCESS_TOKEN_URL).mock(side_effect=_grant_after_cancel)
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client)
            with pytest.raises(DeviceFlowCancelledError):
                await flow.complete_device_flow("dev-1", interval=0, cancel_event=cancel)

        assert flow.state is DeviceFlowState.CANCELLED
        assert not flow.is_authenticated()


class TestTokenState:
    @pytest.mark.asyncio
    async def test_initialize_and_logout(self) -> "None":
        async with httpx.AsyncClient() as client:
            flow = DeviceFlowClient(client)
            flow.initialize_token("tok")
            assert flow.is_authenticated()
            assert flow.get_current_token() == "tok"
            flow.logout()
            assert not flow.is_authenticated()
            assert flow.get_current_token() is None
