"""Unit tests for utils.telegram message formatting (no network)."""

from autotrader.utils import telegram
from autotrader.utils.telegram import TelegramNotifier, format_compliance_summary, format_execution_message


def test_compliance_summary():
    assert format_compliance_summary(None) is None
    assert format_compliance_summary({"status": "cleared"}) is None
    blocked = {
        "status": "blocked",
        "breaches": [{"type": "dailyLoss", "message": "Daily loss 120.00 exceeds limit 100.00",
                      "limit": 100.0, "value": 120.0}],
    }
    text = format_compliance_summary(blocked)
    assert text.startswith("Risk blocked: dailyLoss")
    assert "limit 100" in text
    assert format_compliance_summary({"status": "scaled", "breaches": []}) == "Risk adjusted"
    assert format_compliance_summary({"status": "flagged"}) == "Risk flag"


def test_execution_message():
    msg = format_execution_message({
        "asset_key": "BTC", "action": "open", "direction": "long", "status": "executed",
        "quantity": 0.5, "price": 100.0,
    })
    assert msg.splitlines()[0] == "[EXECUTED] BTC open long"
    assert "qty=0.5 @ 100" in msg


def test_notifier_skips_without_credentials(monkeypatch):
    calls = []
    monkeypatch.setattr(telegram.requests, "post", lambda *a, **kw: calls.append(a))
    TelegramNotifier("", "").report_trading_execution({"asset_key": "BTC"})
    assert calls == []


class _Response:
    status_code = 200
    text = "ok"


def test_notifier_posts_in_background(monkeypatch):
    posted = []

    def fake_post(url, json=None, timeout=None):
        posted.append(json["text"])
        return _Response()

    monkeypatch.setattr(telegram.requests, "post", fake_post)
    notifier = TelegramNotifier("token", "chat")
    notifier.report_trading_execution({
        "asset_key": "ETH", "action": "close", "direction": "short", "status": "executed",
        "quantity": 2.0, "price": 50.0,
    })
    notifier.flush(timeout=5.0)
    assert len(posted) == 1
    assert posted[0].startswith("[EXECUTED] ETH close short")
