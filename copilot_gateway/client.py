"""HTTP client for the GitHub device flow and the Copilot chat API.

Every call carries the editor identification headers the upstream expects.
Non-2xx responses are decoded into typed errors; network failures surface
as TransportError. Nothing here retries.
"""

import logging
from typing import Any, AsyncIterator, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from copilot_gateway.config import UpstreamConfig
from copilot_gateway.errors import GatewayError
from copilot_gateway.models import (
    AuthenticationRequest,
    AuthenticationResponse,
    CompletionRequest,
    LoginRequest,
    LoginResponse,
    SessionResponse,
    UpstreamErrorEnvelope,
)

_logger = logging.getLogger("gateway")

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class TransportError(GatewayError):
    """Raised when the upstream cannot be reached or its body cannot be read."""

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        self.detail = detail
        super().__init__("Error sending request to {}: {}".format(url, detail))


class UpstreamAPIError(GatewayError):
    """Raised for a non-2xx response carrying an error envelope."""

    def __init__(
        self,
        status_code: int,
        message: Optional[str],
        code: Optional[str],
        error_type: Optional[str],
    ) -> None:
        self.status_code = status_code
        self.message = message or ""
        self.code = code or ""
        self.type = error_type or ""
        super().__init__(
            "API error: {} (code: {}, type: {})".format(
                self.message, self.code, self.type
            )
        )


class UpstreamTransportError(GatewayError):
    """Raised for a non-2xx response whose body is not an error envelope."""

    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        super().__init__("API request failed with status: {}".format(status_code))


class InvalidResponseError(GatewayError):
    """Raised when a 2xx body does not match the expected shape."""

    def __init__(self, url: str, detail: str) -> None:
        self.url = url
        self.detail = detail
        super().__init__("Error decoding response from {}: {}".format(url, detail))


def raise_for_upstream_error(resp: httpx.Response) -> None:
    """Turn a non-2xx response into UpstreamAPIError or UpstreamTransportError.

    The response body must already be read.
    """
    if resp.is_success:
        return

    try:
        envelope = UpstreamErrorEnvelope.model_validate_json(resp.content)
    except ValidationError:
        _logger.error(
            "Failed to decode error response (status_code=%d)", resp.status_code
        )
        raise UpstreamTransportError(resp.status_code) from None

    error = envelope.error
    _logger.error(
        "API request failed (status_code=%d, error_type=%s, error_code=%s): %s",
        resp.status_code,
        error.type,
        error.code,
        error.message,
    )
    raise UpstreamAPIError(resp.status_code, error.message, error.code, error.type)


class UpstreamClient:
    """Issues the login, authenticate, session and chat calls.

    The underlying httpx.AsyncClient is owned by the caller so tests and the
    app lifespan control its lifetime.
    """

    def __init__(self, config: UpstreamConfig, http: httpx.AsyncClient) -> None:
        self.config = config
        self._http = http

    def _headers(
        self, authorization: Optional[str] = None, json_body: bool = False
    ) -> Dict[str, str]:
        headers = {
            "editor-version": self.config.editor_version,
            "editor-plugin-version": self.config.editor_plugin_version,
            "user-agent": self.config.user_agent,
        }
        if json_body:
            headers["accept"] = "application/json"
            headers["content-type"] = "application/json"
        if authorization:
            headers["authorization"] = authorization
        return headers

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await self._http.request(
                method, url, timeout=self.config.request_timeout, **kwargs
            )
        except httpx.HTTPError as exc:
            _logger.error("Error sending request to %s: %s", url, exc)
            raise TransportError(url, str(exc)) from exc
        raise_for_upstream_error(resp)
        return resp

    @staticmethod
    def _decode(resp: httpx.Response, model: Type[_ModelT]) -> _ModelT:
        try:
            return model.model_validate_json(resp.content)
        except ValidationError as exc:
            _logger.error("Error decoding response from %s: %s", resp.url, exc)
            raise InvalidResponseError(str(resp.url), str(exc)) from exc

    async def login(self) -> LoginResponse:
        """Request a device code for the interactive login flow."""
        body = LoginRequest(client_id=self.config.client_id)
        resp = await self._send(
            "POST",
            self.config.login_url,
            json=body.model_dump(),
            headers=self._headers(json_body=True),
        )
        return self._decode(resp, LoginResponse)

    async def authenticate(self, login: LoginResponse) -> AuthenticationResponse:
        """Poll once for the access token granted to a device code."""
        body = AuthenticationRequest(
            client_id=self.config.client_id, device_code=login.device_code
        )
        resp = await self._send(
            "POST",
            self.config.authenticate_url,
            json=body.model_dump(),
            headers=self._headers(json_body=True),
        )
        return self._decode(resp, AuthenticationResponse)

    async def get_session_token(self, access_token: str) -> SessionResponse:
        """Exchange the long-lived access token for a session token."""
        headers = self._headers(authorization="token {}".format(access_token))
        headers["accept"] = "application/json"
        resp = await self._send("GET", self.config.session_url, headers=headers)
        return self._decode(resp, SessionResponse)

    async def complete(self, session_token: str, request: CompletionRequest) -> str:
        """Send a non-streaming chat request and return the raw JSON body."""
        payload = request.model_copy(update={"stream": False})
        resp = await self._send(
            "POST",
            self.config.completion_url,
            json=payload.model_dump(),
            headers=self._headers(authorization="Bearer {}".format(session_token)),
        )
        return resp.text

    async def stream(
        self, session_token: str, request: CompletionRequest
    ) -> AsyncIterator[str]:
        """Send a streaming chat request and yield the raw SSE lines.

        The upstream response stays open only while the generator is being
        consumed; closing the generator releases the connection.
        """
        payload = request.model_copy(update={"stream": True})
        url = self.config.completion_url
        try:
            async with self._http.stream(
                "POST",
                url,
                json=payload.model_dump(),
                headers=self._headers(authorization="Bearer {}".format(session_token)),
                timeout=self.config.request_timeout,
            ) as resp:
                if not resp.is_success:
                    await resp.aread()
                    raise_for_upstream_error(resp)
                async for line in resp.aiter_lines():
                    yield line
        except httpx.HTTPError as exc:
            _logger.error("Error sending request to %s: %s", url, exc)
            raise TransportError(url, str(exc)) from exc
