"""Wire models for the Copilot chat gateway.

Inbound payloads, the upstream request/response shapes and the
OpenAI-compatible objects the gateway emits. Upstream models are lenient
(extra fields ignored, missing or null fields fall back to zero values);
outbound models are strict about which of ``message`` / ``delta`` a choice
carries.
"""

from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _null_as_zero(value: Any) -> Any:
    return 0 if value is None else value


class Message(BaseModel):
    """A single message in a chat conversation."""

    model_config = ConfigDict(frozen=True)

    role: str
    content: str

    @field_validator("content", mode="before")
    @classmethod
    def null_content_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ChatPayload(BaseModel):
    """Inbound OpenAI-shaped request; omitted fields take configured defaults."""

    messages: List[Message]
    model: Optional[str] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    n: Optional[int] = None
    stream: Optional[bool] = None


class CompletionRequest(BaseModel):
    """Body sent to the upstream completion endpoint."""

    model: str
    messages: List[Message]
    temperature: float
    top_p: float
    n: int
    stream: bool = False


class Usage(BaseModel):
    """Token accounting for a completion."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @field_validator("prompt_tokens", "completion_tokens", "total_tokens", mode="before")
    @classmethod
    def null_count_is_zero(cls, value: Any) -> Any:
        return _null_as_zero(value)

    @property
    def is_empty(self) -> bool:
        return not (self.prompt_tokens or self.completion_tokens or self.total_tokens)


# --- Upstream response shapes ---


class UpstreamMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class UpstreamChoice(BaseModel):
    index: int = 0
    finish_reason: Optional[str] = None
    message: Optional[UpstreamMessage] = None
    delta: Optional[UpstreamMessage] = None

    @field_validator("index", mode="before")
    @classmethod
    def null_index_is_zero(cls, value: Any) -> Any:
        return _null_as_zero(value)


class UpstreamCompletion(BaseModel):
    """A completion body or a single SSE chunk as sent by the upstream."""

    id: Optional[str] = None
    created: Optional[int] = None
    model: Optional[str] = None
    choices: List[UpstreamChoice] = Field(default_factory=list)
    usage: Optional[Usage] = None

    @field_validator("choices", mode="before")
    @classmethod
    def null_choices_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# --- Outbound OpenAI-compatible shapes ---


class Delta(BaseModel):
    """Partial message carried by a streaming chunk."""

    role: Optional[str] = None
    content: Optional[str] = None


class Choice(BaseModel):
    """A finalized choice; always carries a full message."""

    index: int = 0
    message: Message
    finish_reason: Optional[str] = None


class ChunkChoice(BaseModel):
    """A streaming choice; always carries a delta."""

    index: int = 0
    delta: Delta
    finish_reason: Optional[str] = None


class ChatCompletion(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: str
    choices: List[Choice]
    usage: Usage


class ChatCompletionChunk(BaseModel):
    id: str
    object: Literal["chat.completion.chunk"] = "chat.completion.chunk"
    created: int
    model: str
    choices: List[ChunkChoice]


# --- Device-code flow and session exchange ---


class LoginRequest(BaseModel):
    client_id: str
    scopes: str = "read:user"


class LoginResponse(BaseModel):
    """Device code issued by the login endpoint."""

    device_code: str
    user_code: str
    verification_uri: str
    interval: int = 0


class AuthenticationRequest(BaseModel):
    client_id: str
    device_code: str
    grant_type: str = "urn:ietf:params:oauth:grant-type:device_code"


class AuthenticationResponse(BaseModel):
    """Poll result; an empty access_token means approval is still pending."""

    access_token: str = ""
    token_type: str = ""
    scope: str = ""
    interval: int = 0
    error: Optional[str] = None
    error_description: Optional[str] = None


class SessionResponse(BaseModel):
    token: str
    expires_at: Optional[int] = None


class UpstreamErrorDetail(BaseModel):
    message: Optional[str] = None
    type: Optional[str] = None
    code: Optional[str] = None


class UpstreamErrorEnvelope(BaseModel):
    """The ``{"error": {...}}`` body returned on non-2xx responses."""

    error: UpstreamErrorDetail
