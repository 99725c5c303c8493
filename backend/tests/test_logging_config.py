import json
import logging

from returnsdesk.core.logging_config import JsonFormatter, RequestIdFilter, build_log_payload, request_id_ctx_var


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("returnsdesk.test", logging.INFO, __file__, 1, "return_request_transition", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_request_id_filter_uses_context_var() -> None:
    token = request_id_ctx_var.set("req-1")
    try:
        record = _record()
        assert RequestIdFilter().filter(record) is True
        assert record.request_id == "req-1"
    finally:
        request_id_ctx_var.reset(token)


def test_request_id_filter_keeps_explicit_value() -> None:
    record = _record(request_id="explicit")
    RequestIdFilter().filter(record)
    assert record.request_id == "explicit"


def test_payload_carries_extra_fields() -> None:
    payload = build_log_payload(_record(order_id="o-1", to_status="approved", images=["a", "b"]))
    assert payload["message"] == "return_request_transition"
    assert payload["order_id"] == "o-1"
    assert payload["to_status"] == "approved"
    assert payload["images"] == ["a", "b"]
    assert payload["request_id"] == "-"


def test_json_formatter_emits_json() -> None:
    line = JsonFormatter().format(_record(request_id="r", order_id="o-2"))
    body = json.loads(line)
    assert body["level"] == "INFO"
    assert body["order_id"] == "o-2"
