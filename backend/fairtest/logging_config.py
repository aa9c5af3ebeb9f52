"""
Structured JSON logging for FairTest.

Every record is written to stdout as one JSON object with a channel
(http, db, identity, evaluator, assembler, ledger), the current request id
and two dicts: `context` for business identifiers and `extra` for metrics.

Identity material must not end up in log files. `IdentityRedactionFilter`
truncates any context value whose key names a hash and drops wallet, uid and
salt keys outright, so a careless call site cannot leak them.
"""

import logging
import json
import os
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar

# Request id for the HTTP request being served, set by middleware in main.py
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CHANNELS = ("http", "db", "identity", "evaluator", "assembler", "ledger")

HASH_PREVIEW_CHARS = 16

# Context keys that are never written, whatever their value
_FORBIDDEN_KEYS = {"wallet", "wallet_address", "walletaddress", "uid", "uid_hash", "uidhash", "salt"}


def short_hash(value: str) -> str:
    """First HASH_PREVIEW_CHARS characters of a FINAL_HASH, for log output."""
    if not value:
        return ""
    if len(value) <= HASH_PREVIEW_CHARS or value.endswith("..."):
        return value
    return value[:HASH_PREVIEW_CHARS] + "..."


class IdentityRedactionFilter(logging.Filter):
    """Strips identity material from the `context` attached by log_with_context."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = getattr(record, "context", None)
        if context:
            cleaned = {}
            for key, value in context.items():
                if key.lower() in _FORBIDDEN_KEYS:
                    continue
                if key.lower().endswith("hash") and isinstance(value, str):
                    value = short_hash(value)
                cleaned[key] = value
            record.context = cleaned
        return True


class StructuredJsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, message, channel, context, extra."""

    def format(self, record: logging.LogRecord) -> str:
        now = datetime.now(timezone.utc)
        channel = getattr(record, "channel", None) or record.name.rsplit(".", 1)[-1]
        entry = {
            "timestamp": now.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "message": record.getMessage(),
            "channel": channel,
            "context": {"request_id": request_id_var.get(""), **(getattr(record, "context", None) or {})},
            "extra": getattr(record, "extra_data", None) or {},
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging():
    """
    Install the JSON handler on the root logger and set every channel's level.

    Safe to call more than once; the root handler list is replaced each time.
    """
    level = getattr(logging, LOG_LEVEL, logging.INFO)

    handler = logging.StreamHandler()
    handler.setFormatter(StructuredJsonFormatter())
    handler.addFilter(IdentityRedactionFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    for channel in CHANNELS:
        get_logger(channel).setLevel(level)

    return root_logger


def get_logger(channel: str) -> logging.Logger:
    return logging.getLogger(f"fairtest.{channel}")


def log_with_context(logger: logging.Logger, level: str, message: str,
                     context: dict = None, extra_data: dict = None):
    """
    Emit a structured entry on a channel logger.

    Args:
        logger: Channel logger from get_logger
        level: Level name (DEBUG, INFO, WARNING, ERROR)
        message: Human-readable message
        context: Identifiers such as exam_id, submission_id, final_hash
        extra_data: Metrics such as duration_ms or counts
    """
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        message,
        extra={
            "context": context or {},
            "extra_data": extra_data or {},
            "channel": logger.name.rsplit(".", 1)[-1],
        },
    )


def generate_request_id() -> str:
    return str(uuid.uuid4())
