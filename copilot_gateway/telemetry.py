"""Logging and telemetry for the Copilot chat gateway.

Emits log records to stdout and appends them to an append-only log file.
Each chat request also produces one structured JSON record.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("gateway")


def setup_logging(log_file: Optional[str], level: int = logging.INFO) -> None:
    """Configure the gateway logger with stdout and file handlers.

    Only the first call has any effect.

    Args:
        log_file: Path to the append-only log file, or None for stdout only.
        level: Minimum level for both handlers.
    """
    if not logger.handlers:
        logger.setLevel(level)

        fmt = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

        stdout_handler = logging.StreamHandler()
        stdout_handler.setLevel(level)
        stdout_handler.setFormatter(fmt)
        logger.addHandler(stdout_handler)

        if log_file:
            log_path = Path(log_file)
            os.makedirs(log_path.parent, exist_ok=True)
            file_handler = logging.FileHandler(log_path, mode="a")
            file_handler.setLevel(level)
            file_handler.setFormatter(fmt)
            logger.addHandler(file_handler)


def log_request(
    *,
    request_id: str,
    model: str,
    stream: bool,
    outcome: str,
    usage: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
    duration_ms: Optional[float] = None,
    chunks: Optional[int] = None
) -> None:
    """Log a single chat request as one JSON line.

    Args:
        request_id: The ``chatcmpl-`` id assigned to the request.
        model: The upstream model used.
        stream: Whether the caller asked for SSE.
        outcome: Short outcome label (e.g. "success", "upstream_error").
        usage: Token usage dict for non-streaming requests.
        error: Error message if the request failed.
        duration_ms: Wall time spent serving the request.
        chunks: Number of chunks sent for streaming requests.
    """
    record: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "model": model,
        "stream": stream,
        "outcome": outcome,
    }

    if usage:
        record["usage"] = usage

    if error:
        record["error"] = error

    if duration_ms is not None:
        record["duration_ms"] = round(duration_ms, 1)

    if chunks is not None:
        record["chunks"] = chunks

    if error:
        logger.error(json.dumps(record))
    else:
        logger.info(json.dumps(record))
