import json
import logging
import os
import re
import sys
from datetime import UTC, datetime

# Simple regex to find potential email addresses
EMAIL_REGEX = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Prefixed secrets plus long opaque tokens (Binance keys, Deriv tokens, signatures)
API_KEY_REGEX = re.compile(r"\b(sk|pk|rk)_([a-zA-Z0-9]{20,})\b")
OPAQUE_TOKEN_REGEX = re.compile(r"\b[A-Za-z0-9]{32,}\b")

# Kenyan MSISDNs in local (07.., 01..) or international (2547.., +2541..) form
MSISDN_REGEX = re.compile(r"(?<!\d)(?:\+?254|0)([17]\d{4})(\d{4})(?!\d)")

MASK_STRING = "[REDACTED]"

# Field names in `extra["props"]` to always mask the value of
SENSITIVE_FIELD_NAMES = {
    "password",
    "investor_password",
    "pin",
    "token",
    "api_key",
    "api_secret",
    "secret",
    "passphrase",
    "access_token",
    "client_secret",
    "consumer_secret",
    "passkey",
    "credentials",
}


def mask_text(value: str) -> str:
    masked = EMAIL_REGEX.sub(MASK_STRING, value)
    masked = API_KEY_REGEX.sub(lambda m: m.group(1) + "_" + MASK_STRING, masked)
    masked = OPAQUE_TOKEN_REGEX.sub(MASK_STRING, masked)
    return MSISDN_REGEX.sub(lambda m: "****" + m.group(2), masked)


def mask_value(key: str, value):
    if key.lower() in SENSITIVE_FIELD_NAMES:
        return MASK_STRING
    if isinstance(value, str):
        return mask_text(value)
    if isinstance(value, dict):
        return {k: mask_value(str(k), v) for k, v in value.items()}
    return value


class PIIMaskingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Formatter reads masked_message; record.msg/args stay untouched
        record.masked_message = mask_text(record.getMessage())

        if hasattr(record, "props") and isinstance(record.props, dict):
            record.props = {key: mask_value(key, value) for key, value in record.props.items()}
        return True  # Always process the record


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            # Use the masked message if available, otherwise the original
            "message": getattr(record, "masked_message", record.getMessage()),
            "logger_name": record.name,
            "func_name": record.funcName,
            "line_no": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        # Use the (potentially masked) props
        if hasattr(record, "props") and isinstance(record.props, dict):
            log_entry.update(record.props)
        return json.dumps(log_entry, default=str)


def setup_logging():
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    numeric_level = getattr(logging, log_level, None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {log_level}")

    # Configure root logger
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Remove default handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JsonFormatter())
    console_handler.addFilter(PIIMaskingFilter())
    root_logger.addHandler(console_handler)

    # Suppress verbose logging from libraries
    logging.getLogger("uvicorn.error").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    # httpx logs every request URL at INFO, including signed Binance queries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.INFO)
