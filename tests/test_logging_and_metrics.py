from __future__ import annotations

import json
import logging

import pytest

from bookledger.runtime import metrics
from bookledger.runtime.ledger_logging import log_event


def test_log_event_emits_single_json_line(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("bookledger.test")
    caplog.set_level(logging.INFO, logger="bookledger.test")

    log_event(log, "ledger_opened", chain_id="c1", height=3)

    assert len(caplog.records) == 1
    payload = json.loads(caplog.records[0].getMessage())
    assert payload["event"] == "ledger_opened"
    assert payload["chain_id"] == "c1"
    assert payload["height"] == 3
    assert isinstance(payload["ts_ms"], int)


def test_log_event_falls_back_for_unserializable_fields(caplog: pytest.LogCaptureFixture) -> None:
    log = logging.getLogger("bookledger.test")
    caplog.set_level(logging.INFO, logger="bookledger.test")

    log_event(log, "odd", obj=object())

    msg = caplog.records[0].getMessage()
    assert msg.startswith("event=odd obj=")


def test_metrics_series_and_prometheus() -> None:
    metrics.reset()
    metrics.inc_counter("tx_applied_total")
    metrics.inc_counter("tx_applied_total", 2)
    metrics.inc_counter("  ")
    metrics.set_gauge("books_registered", 4, labels={"chain_id": "c1"})

    assert metrics.get_counter("tx_applied_total") == 3
    assert metrics.get_counter("tx_applied_total", labels={"chain_id": "c1"}) == 0
    assert metrics.get_gauge("books_registered", labels={"chain_id": "c1"}) == 4
    assert metrics.get_gauge("books_registered") is None

    text = metrics.format_prometheus(prefix="lib_")
    lines = text.strip().splitlines()
    assert lines[0].startswith("lib_uptime_ms ")
    assert "lib_tx_applied_total 3" in lines
    assert 'lib_books_registered{chain_id="c1"} 4' in lines
