"""FastAPI application for the Copilot chat gateway.

Serves ``POST /chat`` and ``POST /v1/chat/completions`` with an
OpenAI-compatible contract, forwarding to the Copilot completion API.

Startup:
1. Read the long-lived access token from the token file (hard requirement)
2. Exchange it for a session token
3. Start the background refresher that keeps the session token current

Per request:
1. Parse the payload and fill omitted fields from configured defaults
2. Call the upstream with the current session token
3. Translate the reply into one JSON document or an SSE stream
"""

import json
import os
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from copilot_gateway.client import UpstreamClient
from copilot_gateway.config import CompletionDefaults, GatewayConfig, load_config
from copilot_gateway.credentials import CredentialStore
from copilot_gateway.errors import GatewayError
from copilot_gateway.models import ChatPayload, CompletionRequest
from copilot_gateway.session import SessionRefresher, SessionTokenCell
from copilot_gateway.telemetry import log_request, logger, setup_logging
from copilot_gateway.translator import (
    DONE_SENTINEL,
    new_completion_id,
    translate_completion,
    translate_stream,
)

VERSION = "0.1.0"

CONFIG_ENV = "COPILOT_GATEWAY_CONFIG"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

router = APIRouter()


def load_gateway_config(path: Optional[str] = None) -> GatewayConfig:
    """Load the config file at ``path``, or built-in defaults when unset."""
    if not path:
        return GatewayConfig()
    return load_config(path)


def get_config(request: Request) -> GatewayConfig:
    return request.app.state.config


def get_upstream(request: Request) -> UpstreamClient:
    return request.app.state.upstream


def get_session_cell(request: Request) -> SessionTokenCell:
    return request.app.state.session


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Load the stored credential, open the upstream client, start refreshing."""
    cfg: GatewayConfig = application.state.config
    setup_logging(cfg.log_file)

    access_token = CredentialStore(cfg.token_file).read()

    async with httpx.AsyncClient() as http:
        upstream = UpstreamClient(cfg.upstream, http)
        cell = SessionTokenCell()
        refresher = SessionRefresher(upstream, access_token, cell, cfg.session)
        await refresher.refresh_once()

        application.state.upstream = upstream
        application.state.session = cell
        refresher.start()
        try:
            yield
        finally:
            await refresher.stop()


def create_app(config: Optional[GatewayConfig] = None) -> FastAPI:
    """Build the gateway application around ``config``.

    Without ``config`` the file named by ``COPILOT_GATEWAY_CONFIG`` is read,
    so ``uvicorn --factory copilot_gateway.app:create_app`` works unassisted.
    """
    if config is None:
        config = load_gateway_config(os.getenv(CONFIG_ENV))

    application = FastAPI(
        title="Copilot Chat Gateway", version=VERSION, lifespan=lifespan
    )
    application.state.config = config
    application.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors.allow_origins,
        allow_methods=config.cors.allow_methods,
        allow_headers=config.cors.allow_headers,
        allow_credentials=config.cors.allow_credentials,
    )
    application.include_router(router)
    return application


def _error_response(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": message})


def _sse(data: str) -> str:
    return "data: {}\n\n".format(data)


def build_completion_request(
    payload: ChatPayload, defaults: CompletionDefaults
) -> CompletionRequest:
    """Fill every optional field the caller left out from ``defaults``."""
    return CompletionRequest(
        model=payload.model if payload.model is not None else defaults.model,
        messages=payload.messages,
        temperature=(
            payload.temperature
            if payload.temperature is not None
            else defaults.temperature
        ),
        top_p=payload.top_p if payload.top_p is not None else defaults.top_p,
        n=payload.n if payload.n is not None else defaults.n,
        stream=payload.stream if payload.stream is not None else defaults.stream,
    )


async def _stream_events(
    upstream: UpstreamClient,
    session_token: str,
    completion_request: CompletionRequest,
    request_id: str,
    created: int,
    started: float,
) -> AsyncIterator[str]:
    """Re-emit translated chunks as SSE, ending with ``[DONE]`` or one error event.

    Headers are already committed by the time anything fails, so failures
    become an SSE ``error`` event rather than an HTTP status.
    """
    chunks = translate_stream(
        upstream.stream(session_token, completion_request),
        completion_request.model,
        completion_id=request_id,
        created=created,
    )
    sent = 0
    try:
        async for chunk in chunks:
            yield _sse(chunk.model_dump_json())
            sent += 1
    except GatewayError as exc:
        message = "Failed to process chat request: {}".format(exc)
        log_request(
            request_id=request_id,
            model=completion_request.model,
            stream=True,
            outcome="upstream_error",
            error=str(exc),
            duration_ms=(time.monotonic() - started) * 1000,
            chunks=sent,
        )
        yield _sse(json.dumps({"error": {"message": message, "type": "server_error"}}))
        return
    finally:
        await chunks.aclose()

    log_request(
        request_id=request_id,
        model=completion_request.model,
        stream=True,
        outcome="success",
        duration_ms=(time.monotonic() - started) * 1000,
        chunks=sent,
    )
    yield _sse(DONE_SENTINEL)


@router.post("/chat", response_model=None)
@router.post("/v1/chat/completions", response_model=None)
async def chat_completions(
    request: Request,
    config: GatewayConfig = Depends(get_config),
    upstream: UpstreamClient = Depends(get_upstream),
    cell: SessionTokenCell = Depends(get_session_cell),
) -> Any:
    """Handle an OpenAI-style chat completion request."""
    started = time.monotonic()

    try:
        payload = ChatPayload.model_validate_json(await request.body())
    except ValidationError as exc:
        logger.error("Failed to parse request body: %s", exc)
        return _error_response(400, "Invalid request payload")

    completion_request = build_completion_request(payload, config.completion)
    request_id = new_completion_id()
    logger.debug(
        "Processing chat request (model=%s, stream=%s, message_count=%d)",
        completion_request.model,
        completion_request.stream,
        len(completion_request.messages),
    )

    credential = cell.get()
    if credential is None:
        log_request(
            request_id=request_id,
            model=completion_request.model,
            stream=completion_request.stream,
            outcome="no_session",
            error="Session token unavailable",
        )
        return _error_response(503, "Session token unavailable")

    if completion_request.stream:
        return StreamingResponse(
            _stream_events(
                upstream,
                credential.token,
                completion_request,
                request_id,
                int(time.time()),
                started,
            ),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    try:
        body = await upstream.complete(credential.token, completion_request)
        completion = translate_completion(
            body,
            completion_request.model,
            completion_request.messages,
            completion_id=request_id,
        )
    except GatewayError as exc:
        log_request(
            request_id=request_id,
            model=completion_request.model,
            stream=False,
            outcome="upstream_error",
            error=str(exc),
            duration_ms=(time.monotonic() - started) * 1000,
        )
        return _error_response(400, "Failed to process chat request: {}".format(exc))

    log_request(
        request_id=request_id,
        model=completion_request.model,
        stream=False,
        outcome="success",
        usage=completion.usage.model_dump(),
        duration_ms=(time.monotonic() - started) * 1000,
    )
    return JSONResponse(status_code=200, content=completion.model_dump())


@router.get("/healthz")
async def healthz(cell: SessionTokenCell = Depends(get_session_cell)) -> Dict[str, Any]:
    """Liveness plus the state of the current session credential."""
    credential = cell.get()
    return {
        "status": "ok",
        "session_expires_at": credential.expires_at if credential else None,
        "session_expired": credential.is_expired if credential else None,
    }
