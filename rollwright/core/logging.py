"""
Rollwright Core - Logging setup.

Loguru sinks for console and rotated file output, optional JSON records,
session-bound loggers, and redaction of credentials in every record.
"""

from __future__ import annotations

import json
import os
import re
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from rollwright.config.models import LoggingConfig


_EMOJI_TO_ASCII = {
    "🚀": "[DEPLOY]",
    "🔄": "[RETRY]",
    "⚠️": "[WARN]",
    "🔴": "[OPEN]",
    "🟢": "[CLOSED]",
    "⏱️": "[TIMEOUT]",
    "✅": "[OK]",
    "❌": "[ERROR]",
    "⏪": "[ROLLBACK]",
    "🔌": "[POOL]",
    "🩺": "[HEALTH]",
    "📊": "[STATS]",
    "⏭️": "[SKIP]",
    "🖥️": "[EXEC]",
}

_SECRET_PATTERNS = [
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._\-]+"), r"\1[REDACTED]"),
    (
        re.compile(r"((?:api[_-]?token|token|secret|password)\s*[=:]\s*)\S+", re.IGNORECASE),
        r"\1[REDACTED]",
    ),
]


def use_emoji_logs() -> bool:
    """Emoji prefixes are on unless ROLLWRIGHT_EMOJI_LOGS is 0/false/no/off."""
    value = os.environ.get("ROLLWRIGHT_EMOJI_LOGS", "1").lower()
    return value not in ("0", "false", "no", "off")


def log_prefix(emoji: str) -> str:
    """
    Return the log prefix for an emoji.

    Args:
        emoji: The emoji to use when emoji logs are enabled.

    Returns:
        The emoji, or its ASCII equivalent when emoji logs are disabled.
    """
    if use_emoji_logs():
        return emoji
    return _EMOJI_TO_ASCII.get(emoji, "")


def redact(text: str) -> str:
    """Mask bearer tokens and key=value secrets."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def _redaction_patcher(record: dict[str, Any]) -> None:
    record["message"] = redact(record["message"])
    for key, value in list(record["extra"].items()):
        if isinstance(value, str):
            record["extra"][key] = redact(value)


def _format_record(json_logs: bool, include_caller: bool):
    def format_record(record: dict[str, Any]) -> str:
        sid = record["extra"].get("session_id", "")
        target = record["extra"].get("target", "")

        if json_logs:
            entry = {
                "timestamp": record["time"].isoformat(),
                "level": record["level"].name,
                "message": record["message"],
                "module": record["name"],
                "function": record["function"],
                "line": record["line"],
            }
            if sid:
                entry["session_id"] = sid
            if target:
                entry["target"] = target
            # Braces are escaped: loguru formats the returned string again
            return json.dumps(entry).replace("{", "{{").replace("}", "}}") + "\n"

        context = " | ".join(v for v in (sid, target) if v)
        prefix = "{time:YYYY-MM-DD HH:mm:ss} | "
        if context:
            prefix += context.replace("{", "{{").replace("}", "}}") + " | "
        if include_caller:
            return prefix + "{level: <8} | {name}:{function}:{line} - {message}\n{exception}"
        return prefix + "{level: <8} | {message}\n{exception}"

    return format_record


def configure_logging(config: LoggingConfig | None = None, verbose: bool = False) -> None:
    """
    Configure loguru sinks.

    Rules:
    1. CONSOLE: stderr at ``config.console_level`` (DEBUG when verbose).
    2. FILE: only when ``config.log_file`` is set, rotated and retained.

    Args:
        config: Logging settings (defaults when None)
        verbose: Force DEBUG on the console sink
    """
    from rollwright.config.models import LoggingConfig

    config = config or LoggingConfig()
    logger.remove()

    console_format = (
        "<green>{time:HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )
    logger.add(
        sys.stderr,
        format=console_format,
        level="DEBUG" if verbose else config.console_level.upper(),
        colorize=True,
    )

    if config.log_file:
        log_path = Path(config.log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            rotation=config.rotation,
            retention=config.retention,
            level=config.file_level.upper(),
            format=_format_record(config.json_logs, config.include_caller),
            enqueue=True,
        )

    logger.configure(patcher=_redaction_patcher)


def get_session_logger(session_id: str, target: str | None = None):
    """
    Get a logger bound to a deployment session.

    Example:
        >>> log = get_session_logger("dep_3f2a", target="api.example.com")
        >>> log.info("Deploy started")
    """
    if target:
        return logger.bind(session_id=session_id, target=target)
    return logger.bind(session_id=session_id)
