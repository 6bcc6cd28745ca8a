"""Configuration loader for the Copilot chat gateway.

Reads a JSON config file with upstream endpoints, client identification,
completion defaults, session refresh parameters and CORS settings. Every key
is optional; missing keys fall back to the defaults below.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Union


@dataclass
class UpstreamConfig:
    """Fixed upstream endpoints and the headers that identify this client."""

    login_url: str = "https://github.com/login/device/code"
    authenticate_url: str = "https://github.com/login/oauth/access_token"
    session_url: str = "https://api.github.com/copilot_internal/v2/token"
    completion_url: str = "https://api.githubcopilot.com/chat/completions"
    client_id: str = "Iv1.b507a08c87ecfe98"
    editor_version: str = "vscode/1.83.1"
    editor_plugin_version: str = "copilot-chat/0.8.0"
    user_agent: str = "githubCopilot/1.155.0"
    request_timeout: float = 60.0


@dataclass
class CompletionDefaults:
    """Values applied when an inbound request omits an optional field."""

    model: str = "claude-3.7-sonnet"
    temperature: float = 0.3
    top_p: float = 0.9
    n: int = 1
    stream: bool = False


@dataclass
class SessionConfig:
    """Session token refresh parameters."""

    refresh_interval_seconds: float = 25 * 60
    retry_attempts: int = 5
    retry_initial_seconds: float = 1.0
    retry_max_seconds: float = 60.0


@dataclass
class CorsConfig:
    """Allow-list for browser clients."""

    allow_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:5173"]
    )
    allow_methods: List[str] = field(
        default_factory=lambda: ["GET", "POST", "PUT", "DELETE", "OPTIONS"]
    )
    allow_headers: List[str] = field(
        default_factory=lambda: [
            "Accept",
            "Authorization",
            "Content-Type",
            "Content-Length",
            "Accept-Encoding",
        ]
    )
    allow_credentials: bool = True


@dataclass
class GatewayConfig:
    """Top-level gateway configuration."""

    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    completion: CompletionDefaults = field(default_factory=CompletionDefaults)
    session: SessionConfig = field(default_factory=SessionConfig)
    cors: CorsConfig = field(default_factory=CorsConfig)
    token_file: str = ".github_copilot_token"
    log_file: str = "logs/gateway.log"
    host: str = "127.0.0.1"
    port: int = 3000


def _section(cls: Any, raw: Dict[str, Any]) -> Any:
    """Build a config section, ignoring keys the dataclass does not define."""
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
    return cls(**known)


def load_config(path: Union[str, Path]) -> GatewayConfig:
    """Load gateway configuration from a JSON file.

    Args:
        path: Path to the JSON config file.

    Returns:
        A fully resolved GatewayConfig instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ValueError: If the config file is not a JSON object.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = json.load(f)

    if not isinstance(raw, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")

    defaults = GatewayConfig()
    return GatewayConfig(
        upstream=_section(UpstreamConfig, raw.get("upstream", {})),
        completion=_section(CompletionDefaults, raw.get("completion", {})),
        session=_section(SessionConfig, raw.get("session", {})),
        cors=_section(CorsConfig, raw.get("cors", {})),
        token_file=raw.get("token_file", defaults.token_file),
        log_file=raw.get("log_file", defaults.log_file),
        host=raw.get("host", defaults.host),
        port=raw.get("port", defaults.port),
    )
