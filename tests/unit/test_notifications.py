import json
from datetime import date, datetime, timezone

import pandas as pd
import requests

from channel_sync import settings
from channel_sync.data_handler import (
    build_stockout_message,
    notify_stockout,
    post_to_webhook,
    save_alert_outputs,
)
from channel_sync.schemas import StockoutAlert
from conftest import FakeSession, make_response

WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXX"


def _alert(sku, level="CRITICAL", stock=3, days=1):
    return StockoutAlert(
        run_id="run-1",
        sku=sku,
        product_name=f"Product {sku}",
        current_stock=stock,
        inbound_stock=0,
        daily_sales_rate=2.5,
        days_until_stockout=days,
        alert_level=level,
        suggested_order_qty=72,
        predicted_stockout_date=date(2025, 3, 2),
        calculated_at=datetime(2025, 3, 1, tzinfo=timezone.utc),
    )


def _texts(message):
    return [b["text"]["text"] for b in message["blocks"] if b["type"] == "section"]


def test_message_layout():
    message = build_stockout_message([_alert("A"), _alert("B", stock=0, days=0), _alert("C", "WARNING", days=10)])

    blocks = message["blocks"]
    assert blocks[0]["type"] == "header"
    assert "Critical: 2" in blocks[1]["text"]["text"]
    assert "Warning: 1" in blocks[1]["text"]["text"]
    assert blocks[2]["type"] == "divider"
    critical = _texts(message)[1:]
    assert len(critical) == 2
    assert "Master SKU: `A`" in critical[0]
    assert "Stockout in 1 days" in critical[0]
    assert "Daily sales: 2.50/day" in critical[0]
    assert "Suggested order: 72" in critical[0]
    assert "Out of stock" in critical[1]


def test_only_top_critical_alerts_listed():
    alerts = [_alert(f"SKU-{i}") for i in range(13)]

    message = build_stockout_message(alerts, max_items=10)

    assert len(_texts(message)) == 1 + 10
    assert message["blocks"][-1]["type"] == "context"
    assert "+3 more" in message["blocks"][-1]["elements"][0]["text"]


def test_warning_only_run_still_sends_summary():
    message = build_stockout_message([_alert("A", "WARNING", days=12)])

    assert len(_texts(message)) == 1
    assert "Warning: 1" in _texts(message)[0]


def test_no_alerts_no_message():
    assert build_stockout_message([]) is None
    assert notify_stockout([], WEBHOOK, FakeSession()) is False


def test_post_success():
    session = FakeSession([make_response(200, {"ok": True})])

    assert notify_stockout([_alert("A")], WEBHOOK, session) is True
    call = session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == WEBHOOK
    assert call["json"]["blocks"][0]["type"] == "header"


def test_missing_url_is_a_no_op():
    session = FakeSession()

    assert post_to_webhook({"text": "hi"}, "", session) is False
    assert session.calls == []


def test_failed_post_is_logged_not_raised(caplog):
    session = FakeSession([requests.ConnectionError("down")])

    with caplog.at_level("ERROR", logger="channel_sync.data_handler"):
        assert post_to_webhook({"text": "hi"}, WEBHOOK, session) is False

    assert any("Error posting to webhook" in r.getMessage() for r in caplog.records)


def test_http_error_status_is_a_failed_post():
    session = FakeSession([make_response(500, {"error": "oops"})])

    assert post_to_webhook({"text": "hi"}, WEBHOOK, session) is False


def test_alert_outputs_saved_as_csv_and_json(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "OUTPUT_DIR", tmp_path)

    csv_path, json_path = save_alert_outputs([_alert("A"), _alert("B", "WARNING", days=9)], "alerts")

    frame = pd.read_csv(csv_path)
    assert list(frame["sku"]) == ["A", "B"]
    saved = json.loads(json_path.read_text())
    assert saved[1]["alert_level"] == "WARNING"
    assert saved[0]["predicted_stockout_date"] == "2025-03-02"
