"""Shared test fixtures for the Copilot chat gateway tests."""

import json
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from copilot_gateway.app import create_app
from copilot_gateway.client import UpstreamClient
from copilot_gateway.config import GatewayConfig, SessionConfig, UpstreamConfig
from copilot_gateway.session import SessionCredential, SessionTokenCell

LOGIN_URL = "https://github.test/login/device/code"
AUTHENTICATE_URL = "https://github.test/login/oauth/access_token"
SESSION_URL = "https://api.github.test/copilot_internal/v2/token"
COMPLETION_URL = "https://api.copilot.test/chat/completions"

SESSION_TOKEN = "tid=abc;exp=4102444800;sku=free;8kp=1"
SESSION_EXPIRES_AT = 4102444800


def sse_body(*events: object) -> bytes:
    """Render events as an SSE body; strings are sent as raw lines."""
    lines: List[str] = []
    for event in events:
        if isinstance(event, str):
            lines.append(event)
        else:
            lines.append("data: {}".format(json.dumps(event)))
        lines.append("")
    return ("\n".join(lines) + "\n").encode("utf-8")


def _make_config(tmp_path: Path, overrides: Optional[Dict] = None) -> str:
    """Write a test config file and return its path."""
    config = {
        "upstream": {
            "login_url": LOGIN_URL,
            "authenticate_url": AUTHENTICATE_URL,
            "session_url": SESSION_URL,
            "completion_url": COMPLETION_URL,
            "request_timeout": 5.0,
        },
        "completion": {"model": "test-model"},
        "session": {"refresh_interval_seconds": 60, "retry_attempts": 2},
        "token_file": str(tmp_path / "token"),
        "log_file": str(tmp_path / "test.log"),
    }
    if overrides:
        config.update(overrides)

    path = tmp_path / "test_config.json"
    path.write_text(json.dumps(config))
    return str(path)


@pytest.fixture()
def test_config_path(tmp_path: Path) -> str:
    """Return the path to a temporary test config file."""
    return _make_config(tmp_path)


@pytest.fixture()
def test_config(tmp_path: Path) -> GatewayConfig:
    """Return a GatewayConfig pointed at the mocked upstream hosts."""
    return GatewayConfig(
        upstream=UpstreamConfig(
            login_url=LOGIN_URL,
            authenticate_url=AUTHENTICATE_URL,
            session_url=SESSION_URL,
            completion_url=COMPLETION_URL,
            request_timeout=5.0,
        ),
        session=SessionConfig(
            refresh_interval_seconds=60,
            retry_attempts=3,
            retry_initial_seconds=0,
            retry_max_seconds=0,
        ),
        token_file=str(tmp_path / "token"),
        log_file=str(tmp_path / "test.log"),
    )


@pytest_asyncio.fixture()
async def http() -> AsyncIterator[httpx.AsyncClient]:
    """A real httpx client; upstream calls are intercepted by respx."""
    async with httpx.AsyncClient() as client:
        yield client


@pytest.fixture()
def upstream(test_config: GatewayConfig, http: httpx.AsyncClient) -> UpstreamClient:
    return UpstreamClient(test_config.upstream, http)


@pytest.fixture()
def session_cell() -> SessionTokenCell:
    return SessionTokenCell(
        SessionCredential(token=SESSION_TOKEN, expires_at=SESSION_EXPIRES_AT)
    )


@pytest.fixture()
def gateway(
    test_config: GatewayConfig,
    upstream: UpstreamClient,
    session_cell: SessionTokenCell,
) -> FastAPI:
    """The gateway app with its startup state wired in by hand.

    ASGITransport does not run the lifespan, so nothing touches the token
    file or the session endpoint here.
    """
    application = create_app(test_config)
    application.state.upstream = upstream
    application.state.session = session_cell
    return application


@pytest_asyncio.fixture()
async def client(gateway: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=gateway)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
