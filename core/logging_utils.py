"""
Core Module - Logging Utilities.

============================================================
PURPOSE
============================================================
- Process-wide logging setup (JSON lines or pipe-separated text)
- Credential masking for exchange headers and secrets

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys, secrets or passphrases
2. Mask sensitive headers before they reach a log line

============================================================
"""

import json
import logging
import sys
from typing import Dict, Mapping, Optional


# Header names that should be masked
SENSITIVE_HEADERS = {
    "authorization",
    "x-api-key",
    "x-cg-demo-api-key",
    "x-cg-pro-api-key",
    "tron-pro-api-key",
    "kc-api-key",
    "kc-api-sign",
    "kc-api-passphrase",
}


def mask_value(value: Optional[str], show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to show at start

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of headers with sensitive values masked."""
    return {
        key: mask_value(value) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: str = "INFO", log_format: str = "text") -> logging.Logger:
    """
    Set up process logging.

    Args:
        level: Log level name
        log_format: Output format (json or text)

    Returns:
        The aggregator logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if log_format == "json":
        formatter: logging.Formatter = JsonLineFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")

    # Logs go to stderr so CLI JSON output on stdout stays parseable
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    return logging.getLogger("aggregation")


__all__ = [
    "SENSITIVE_HEADERS",
    "mask_value",
    "mask_headers",
    "JsonLineFormatter",
    "setup_logging",
]
