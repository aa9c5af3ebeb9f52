import json
import logging

from fairtest.logging_config import (
    IdentityRedactionFilter, StructuredJsonFormatter, get_logger, log_with_context,
    request_id_var, short_hash,
)


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.lines = []
        self.setFormatter(StructuredJsonFormatter())
        self.addFilter(IdentityRedactionFilter())

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))


def _capture():
    logger = get_logger("identity")
    handler = ListHandler()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return logger, handler


def test_short_hash():
    assert short_hash("a" * 64) == "a" * 16 + "..."
    assert short_hash("") == ""
    assert short_hash(short_hash("b" * 64)) == "b" * 16 + "..."


def test_entry_shape_and_request_id():
    logger, handler = _capture()
    token = request_id_var.set("req-1")
    try:
        log_with_context(logger, "INFO", "hello", context={"exam_id": "e1"}, extra_data={"duration_ms": 1.5})
    finally:
        request_id_var.reset(token)
        logger.removeHandler(handler)

    entry = handler.lines[0]
    assert entry["channel"] == "identity"
    assert entry["level"] == "INFO"
    assert entry["context"] == {"request_id": "req-1", "exam_id": "e1"}
    assert entry["extra"] == {"duration_ms": 1.5}


def test_identity_material_is_redacted():
    logger, handler = _capture()
    try:
        log_with_context(logger, "WARNING", "oops", context={
            "final_hash": "c" * 64,
            "wallet_address": "0xAbC1234567890DeF1234567890aBcDeF12345678",
            "uid": "d" * 64,
            "exam_id": "e1",
        })
    finally:
        logger.removeHandler(handler)

    context = handler.lines[0]["context"]
    assert context["final_hash"] == "c" * 16 + "..."
    assert "wallet_address" not in context
    assert "uid" not in context
    assert context["exam_id"] == "e1"
