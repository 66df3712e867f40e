from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from photoverify.middleware.request_id import _REQUEST_ID
from photoverify.telemetry.logging import RequestJsonFormatter, bind, configure_logging


def _record(msg: str = "verification complete", **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="photoverify.services.orchestrator",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_stable_keys_and_extras():
    out = json.loads(
        RequestJsonFormatter().format(
            _record(
                tenant_id="t-1",
                passed=True,
                processed_at=datetime(2026, 3, 2, 10, tzinfo=timezone.utc),
                raw=b"bytes",
            )
        )
    )
    assert out["level"] == "INFO"
    assert out["logger"] == "photoverify.services.orchestrator"
    assert out["message"] == "verification complete"
    assert out["ts"].endswith("Z")
    assert out["tenant_id"] == "t-1"
    assert out["passed"] is True
    assert out["processed_at"] == "2026-03-02T10:00:00Z"
    assert out["raw"] == "bytes"
    assert "lineno" not in out and "msg" not in out


def test_formatter_picks_up_request_id_from_context():
    token = _REQUEST_ID.set("req-77")
    try:
        out = json.loads(RequestJsonFormatter().format(_record()))
    finally:
        _REQUEST_ID.reset(token)
    assert out["request_id"] == "req-77"

    out = json.loads(RequestJsonFormatter().format(_record()))
    assert "request_id" not in out


def test_bind_merges_context_without_overriding_call_extra(caplog):
    logger = logging.getLogger("photoverify.tests.bind")
    log = bind(logger, tenant_id="t-1", model="openai/gpt-4o-mini")
    with caplog.at_level(logging.INFO, logger="photoverify.tests.bind"):
        log.info("attempt", extra={"attempt": 2, "model": "override"})
    record = caplog.records[-1]
    assert record.tenant_id == "t-1"
    assert record.attempt == 2
    assert record.model == "override"


def test_bind_leaves_out_unknown_identifiers(caplog):
    logger = logging.getLogger("photoverify.tests.bind")
    log = bind(logger, tenant_id="t-1", task_reference=None, model="openai/gpt-4o")
    with caplog.at_level(logging.INFO, logger="photoverify.tests.bind"):
        log.info("verification complete")
    record = caplog.records[-1]
    assert record.tenant_id == "t-1"
    assert record.model == "openai/gpt-4o"
    assert not hasattr(record, "task_reference")


def test_configure_logging_replaces_only_its_own_handler():
    root = logging.getLogger()
    saved_level = root.level
    foreign = logging.NullHandler()
    root.addHandler(foreign)
    try:
        configure_logging("DEBUG")
        configure_logging("WARNING", json_logs=False)
        ours = [h for h in root.handlers if getattr(h, "_photoverify_handler", False)]
        assert len(ours) == 1
        assert not isinstance(ours[0].formatter, RequestJsonFormatter)
        assert foreign in root.handlers
        assert root.level == logging.WARNING
    finally:
        root.removeHandler(foreign)
        root.setLevel(saved_level)
