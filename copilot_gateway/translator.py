"""Translate upstream completion output into OpenAI-compatible objects.

Streaming input is a sequence of raw SSE lines. Each line is handled on its
own and produces zero, one or two ``chat.completion.chunk`` objects:

1. Lines without the ``data:`` prefix are comments or keepalives; skip.
2. A ``[DONE]`` payload ends the stream. Nothing is emitted for it.
3. Any other payload must be one JSON chunk, else MalformedChunkError.
4. A chunk with no choices is a keepalive; skip.
5. Otherwise the first choice is re-emitted under the request's id and
   timestamp. When it carries both content and a finish reason it is split
   into a content chunk followed by a finish chunk.

Non-streaming input is one JSON body, folded into a single
``chat.completion`` with ``finish_reason`` forced to ``"stop"``.

The HTTP endpoint pulls chunks from ``translate_stream`` directly. Callers
embedding the gateway that would rather be called back per chunk use
``deliver``, where a failing handler is logged and skipped.
"""

import enum
import inspect
import json
import logging
import time
import uuid
from typing import (
    AsyncIterator,
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    TypeVar,
    Union,
)

from pydantic import BaseModel, ValidationError

from copilot_gateway.errors import GatewayError
from copilot_gateway.models import (
    ChatCompletion,
    ChatCompletionChunk,
    Choice,
    ChunkChoice,
    Delta,
    Message,
    UpstreamChoice,
    UpstreamCompletion,
    Usage,
)

_logger = logging.getLogger("gateway")

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"
FINISH_REASON_STOP = "stop"
CHARS_PER_TOKEN = 4

_T = TypeVar("_T", bound=BaseModel)


class MalformedChunkError(GatewayError):
    """Raised when a ``data:`` payload is not a valid completion chunk."""

    def __init__(self, payload: str, detail: str) -> None:
        self.payload = payload
        self.detail = detail
        super().__init__("Error decoding response: {}".format(detail))


class EmptyChoicesError(GatewayError):
    """Raised when a non-streaming completion has no choices."""

    def __init__(self) -> None:
        super().__init__("no choices in completion response")


class HandlerError(GatewayError):
    """Wraps a failure raised by a per-object delivery handler."""

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        super().__init__("Callback error: {}".format(cause))


class StreamState(str, enum.Enum):
    AWAITING_LINE = "awaiting_line"
    DONE = "done"


def new_completion_id() -> str:
    return "chatcmpl-{}".format(uuid.uuid4())


class StreamTranslator:
    """Per-request streaming state machine.

    The id and ``created`` timestamp are fixed at construction and shared by
    every chunk of the request.
    """

    def __init__(
        self,
        model: str,
        completion_id: Optional[str] = None,
        created: Optional[int] = None,
    ) -> None:
        self.model = model
        self.completion_id = completion_id or new_completion_id()
        self.created = created if created is not None else int(time.time())
        self.state = StreamState.AWAITING_LINE

    @property
    def done(self) -> bool:
        return self.state is StreamState.DONE

    def feed(self, line: str) -> List[ChatCompletionChunk]:
        """Consume one raw line and return the chunks it produces.

        Raises:
            MalformedChunkError: If the payload is not a valid JSON chunk.
        """
        if self.done or not line.startswith(DATA_PREFIX):
            return []

        payload = line[len(DATA_PREFIX):].strip()
        if payload == DONE_SENTINEL:
            self.state = StreamState.DONE
            return []

        try:
            upstream = UpstreamCompletion.model_validate_json(payload)
        except ValidationError as exc:
            _logger.error("Error decoding response: %s", exc)
            raise MalformedChunkError(payload, str(exc)) from exc

        if not upstream.choices:
            return []

        return self.split(upstream.choices[0])

    def split(self, choice: UpstreamChoice) -> List[ChatCompletionChunk]:
        """Re-emit one upstream choice, splitting content from finish_reason."""
        delta = choice.delta
        content = delta.content if delta else None
        role = (delta.role or None) if delta else None
        finish_reason = choice.finish_reason or None

        if content and finish_reason:
            return [
                self._chunk(choice.index, Delta(role=role, content=content), None),
                self._chunk(choice.index, Delta(content=""), finish_reason),
            ]

        return [self._chunk(choice.index, Delta(role=role, content=content), finish_reason)]

    def _chunk(
        self, index: int, delta: Delta, finish_reason: Optional[str]
    ) -> ChatCompletionChunk:
        return ChatCompletionChunk(
            id=self.completion_id,
            created=self.created,
            model=self.model,
            choices=[ChunkChoice(index=index, delta=delta, finish_reason=finish_reason)],
        )


async def translate_stream(
    lines: AsyncIterator[str],
    model: str,
    completion_id: Optional[str] = None,
    created: Optional[int] = None,
) -> AsyncIterator[ChatCompletionChunk]:
    """Lazily translate an upstream SSE line stream into chunks.

    Stops reading at ``[DONE]``. Closing this generator closes ``lines`` as
    well, which releases the upstream connection.

    Raises:
        MalformedChunkError: On the first unparsable ``data:`` payload.
    """
    translator = StreamTranslator(model, completion_id=completion_id, created=created)
    try:
        async for line in lines:
            for chunk in translator.feed(line):
                yield chunk
            if translator.done:
                break
    finally:
        aclose = getattr(lines, "aclose", None)
        if aclose is not None:
            await aclose()


def serialize_messages(messages: Sequence[Message]) -> str:
    return json.dumps([m.model_dump() for m in messages], separators=(",", ":"))


def estimate_usage(messages: Sequence[Message], response_text: str) -> Usage:
    """Approximate token counts at four characters per token."""
    prompt_tokens = len(serialize_messages(messages)) // CHARS_PER_TOKEN
    completion_tokens = len(response_text) // CHARS_PER_TOKEN
    return Usage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=prompt_tokens + completion_tokens,
    )


def translate_completion(
    body: Union[str, bytes],
    model: str,
    messages: Sequence[Message],
    completion_id: Optional[str] = None,
) -> ChatCompletion:
    """Fold a buffered upstream body into one ``chat.completion``.

    Upstream usage is kept when present (with ``total_tokens`` recomputed so
    the sum always holds); otherwise it is estimated.

    Raises:
        MalformedChunkError: If the body is not a valid completion.
        EmptyChoicesError: If the body has no choices.
    """
    try:
        upstream = UpstreamCompletion.model_validate_json(body)
    except ValidationError as exc:
        _logger.error("Error decoding response: %s", exc)
        raise MalformedChunkError(
            body.decode("utf-8", "replace") if isinstance(body, bytes) else body,
            str(exc),
        ) from exc

    if not upstream.choices:
        _logger.error("Empty choices array in completion response")
        raise EmptyChoicesError()

    choice = upstream.choices[0]
    text = ""
    if choice.message is not None:
        text = choice.message.content or ""
    elif choice.delta is not None:
        text = choice.delta.content or ""

    usage = upstream.usage
    if usage is None or usage.is_empty:
        usage = estimate_usage(messages, text)
    else:
        usage = Usage(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.prompt_tokens + usage.completion_tokens,
        )

    return ChatCompletion(
        id=completion_id or new_completion_id(),
        created=int(time.time()),
        model=model,
        choices=[
            Choice(
                index=0,
                message=Message(role="assistant", content=text),
                finish_reason=FINISH_REASON_STOP,
            )
        ],
        usage=usage,
    )


Handler = Callable[[_T], Union[None, Awaitable[None]]]


async def deliver(objects: AsyncIterator[_T], handler: Handler) -> int:
    """Pass each object to ``handler``; return how many were delivered.

    Callback form of ``translate_stream`` for library callers; ``handler``
    may be a plain function or a coroutine function. A failing handler is
    logged as a HandlerError and the stream carries on. Errors raised by
    ``objects`` itself propagate.
    """
    delivered = 0
    async for obj in objects:
        try:
            result = handler(obj)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            _logger.error("%s", HandlerError(exc))
            continue
        delivered += 1
    return delivered
