"""Tests for utils.telegram."""

from datetime import datetime, timezone

import requests
from hedge_bot.core.types import Position, PositionStatus, Role, Side
from hedge_bot.utils import telegram


class FakeResponse:
    def __init__(self, status_code, text=""):
        self.status_code = status_code
        self.text = text


def test_unconfigured_is_skipped(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("should not post")

    monkeypatch.setattr(telegram.requests, "post", fail)
    assert telegram.send_telegram("hello") is False


def test_send_success_and_failure(monkeypatch):
    sent = []

    def post(url, json, timeout):
        sent.append((url, json))
        return FakeResponse(200 if json["text"] == "ok" else 400, "bad request")

    monkeypatch.setattr(telegram.requests, "post", post)
    assert telegram.send_telegram("ok", "token", "42") is True
    assert telegram.send_telegram("nope", "token", "42") is False
    assert sent[0] == ("https://api.telegram.org/bottoken/sendMessage", {"chat_id": "42", "text": "ok"})


def test_network_error_is_not_raised(monkeypatch):
    def post(*args, **kwargs):
        raise requests.ConnectionError("down")

    monkeypatch.setattr(telegram.requests, "post", post)
    assert telegram.send_telegram("x", "token", "42") is False


def test_format_close():
    p = Position(id="p1", side=Side.SHORT, role=Role.ANCHOR_HEDGE, size=10.0, entry_price=0.85, leverage=15,
                 open_time=datetime(2024, 1, 1, tzinfo=timezone.utc), status=PositionStatus.CLOSED,
                 exit_price=0.8, pnl=8.8235, close_reason="double_profit")
    assert telegram.format_close("ADAUSDT", p) == "ADAUSDT closed ANCHOR_HEDGE SHORT @ 0.800000 pnl=8.8235 (double_profit)"
