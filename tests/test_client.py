"""Tests for the upstream HTTP client.

Covers:
- Client identification and auth headers on every endpoint
- Request bodies for login, authenticate and chat
- Error envelope decoding (UpstreamAPIError vs UpstreamTransportError)
- Network failures surfacing as TransportError
- Streaming line delivery
"""

import json
from typing import List

import httpx
import pytest
from respx import MockRouter

from copilot_gateway.client import (
    InvalidResponseError,
    TransportError,
    UpstreamAPIError,
    UpstreamClient,
    UpstreamTransportError,
)
from copilot_gateway.models import CompletionRequest, LoginResponse, Message

from conftest import (
    AUTHENTICATE_URL,
    COMPLETION_URL,
    LOGIN_URL,
    SESSION_TOKEN,
    SESSION_URL,
    sse_body,
)

EDITOR_HEADERS = {
    "editor-version": "vscode/1.83.1",
    "editor-plugin-version": "copilot-chat/0.8.0",
    "user-agent": "githubCopilot/1.155.0",
}


def _request(stream: bool = False) -> CompletionRequest:
    return CompletionRequest(
        model="test-model",
        messages=[Message(role="user", content="Hi")],
        temperature=0.3,
        top_p=0.9,
        n=1,
        stream=stream,
    )


def _corrupt_gzip_response() -> httpx.Response:
    return httpx.Response(
        200,
        stream=httpx.ByteStream(b"not-gzip-data"),
        headers={"content-encoding": "gzip"},
    )


def _assert_editor_headers(request: httpx.Request) -> None:
    for name, value in EDITOR_HEADERS.items():
        assert request.headers[name] == value


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_sends_client_id_and_scopes(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        route = respx_mock.post(LOGIN_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "device_code": "dev-123",
                    "user_code": "ABCD-1234",
                    "verification_uri": "https://github.com/login/device",
                    "interval": 5,
                    "expires_in": 900,
                },
            )
        )

        login = await upstream.login()

        assert login.device_code == "dev-123"
        assert login.user_code == "ABCD-1234"
        assert login.interval == 5
        sent = route.calls.last.request
        _assert_editor_headers(sent)
        assert sent.headers["accept"] == "application/json"
        assert json.loads(sent.content) == {
            "client_id": "Iv1.b507a08c87ecfe98",
            "scopes": "read:user",
        }

    @pytest.mark.asyncio
    async def test_authenticate_sends_device_code(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        route = respx_mock.post(AUTHENTICATE_URL).mock(
            return_value=httpx.Response(
                200, json={"access_token": "gho_abc", "token_type": "bearer"}
            )
        )
        login = LoginResponse(
            device_code="dev-123", user_code="X", verification_uri="https://x", interval=1
        )

        auth = await upstream.authenticate(login)

        assert auth.access_token == "gho_abc"
        body = json.loads(route.calls.last.request.content)
        assert body["device_code"] == "dev-123"
        assert body["grant_type"] == "urn:ietf:params:oauth:grant-type:device_code"

    @pytest.mark.asyncio
    async def test_pending_authorization_has_no_token(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.post(AUTHENTICATE_URL).mock(
            return_value=httpx.Response(200, json={"error": "authorization_pending"})
        )
        login = LoginResponse(
            device_code="d", user_code="u", verification_uri="https://x"
        )

        auth = await upstream.authenticate(login)

        assert auth.access_token == ""
        assert auth.error == "authorization_pending"


class TestSessionToken:
    @pytest.mark.asyncio
    async def test_uses_token_authorization(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        route = respx_mock.get(SESSION_URL).mock(
            return_value=httpx.Response(
                200, json={"token": SESSION_TOKEN, "expires_at": 4102444800}
            )
        )

        session = await upstream.get_session_token("gho_abc")

        assert session.token == SESSION_TOKEN
        sent = route.calls.last.request
        assert sent.headers["authorization"] == "token gho_abc"
        _assert_editor_headers(sent)

    @pytest.mark.asyncio
    async def test_unexpected_body_raises(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.get(SESSION_URL).mock(return_value=httpx.Response(200, json={"nope": 1}))

        with pytest.raises(InvalidResponseError):
            await upstream.get_session_token("gho_abc")


class TestErrors:
    @pytest.mark.asyncio
    async def test_error_envelope_becomes_api_error(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.post(COMPLETION_URL).mock(
            return_value=httpx.Response(
                401,
                json={
                    "error": {
                        "message": "unauthorized: token expired",
                        "type": "invalid_request_error",
                        "code": "token_expired",
                    }
                },
            )
        )

        with pytest.raises(UpstreamAPIError) as exc_info:
            await upstream.complete("sess", _request())

        err = exc_info.value
        assert err.status_code == 401
        assert err.message == "unauthorized: token expired"
        assert err.code == "token_expired"
        assert err.type == "invalid_request_error"
        assert "token expired" in str(err)

    @pytest.mark.asyncio
    async def test_undecodable_error_becomes_transport_error(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.get(SESSION_URL).mock(
            return_value=httpx.Response(502, text="<html>Bad Gateway</html>")
        )

        with pytest.raises(UpstreamTransportError) as exc_info:
            await upstream.get_session_token("gho_abc")

        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_network_failure_becomes_transport_error(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.post(LOGIN_URL).mock(side_effect=httpx.ConnectError("dns failure"))

        with pytest.raises(TransportError, match="dns failure"):
            await upstream.login()

    @pytest.mark.asyncio
    async def test_undecodable_body_becomes_transport_error(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.post(COMPLETION_URL).mock(return_value=_corrupt_gzip_response())

        with pytest.raises(TransportError, match="Error sending request"):
            await upstream.complete("sess", _request())

    @pytest.mark.asyncio
    async def test_undecodable_stream_becomes_transport_error(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.post(COMPLETION_URL).mock(return_value=_corrupt_gzip_response())

        with pytest.raises(TransportError):
            async for _ in upstream.stream("sess", _request(stream=True)):
                pass

    @pytest.mark.asyncio
    async def test_stream_error_status_raises_before_lines(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        respx_mock.post(COMPLETION_URL).mock(
            return_value=httpx.Response(
                429, json={"error": {"message": "rate limited", "code": "rate_limited"}}
            )
        )

        with pytest.raises(UpstreamAPIError, match="rate limited"):
            async for _ in upstream.stream("sess", _request(stream=True)):
                pass


class TestChat:
    @pytest.mark.asyncio
    async def test_complete_returns_raw_body(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        payload = {"choices": [{"message": {"role": "assistant", "content": "hi"}}]}
        route = respx_mock.post(COMPLETION_URL).mock(
            return_value=httpx.Response(200, json=payload)
        )

        body = await upstream.complete("sess-token", _request(stream=True))

        assert json.loads(body) == payload
        sent = route.calls.last.request
        assert sent.headers["authorization"] == "Bearer sess-token"
        _assert_editor_headers(sent)
        sent_body = json.loads(sent.content)
        assert sent_body["stream"] is False
        assert sent_body["model"] == "test-model"
        assert sent_body["messages"] == [{"role": "user", "content": "Hi"}]
        assert sent_body["temperature"] == 0.3
        assert sent_body["top_p"] == 0.9
        assert sent_body["n"] == 1

    @pytest.mark.asyncio
    async def test_stream_yields_lines(
        self, upstream: UpstreamClient, respx_mock: MockRouter
    ) -> None:
        route = respx_mock.post(COMPLETION_URL).mock(
            return_value=httpx.Response(
                200,
                content=sse_body({"choices": [{"delta": {"content": "Hi"}}]}, "data: [DONE]"),
                headers={"content-type": "text/event-stream"},
            )
        )

        lines: List[str] = [line async for line in upstream.stream("sess", _request())]

        assert [line for line in lines if line] == [
            'data: {"choices": [{"delta": {"content": "Hi"}}]}',
            "data: [DONE]",
        ]
        assert json.loads(route.calls.last.request.content)["stream"] is True
