"""Tests for the Telegram alert formatting."""
import asyncio
from datetime import datetime

import pytz

from floorcheck.telegram import TelegramNotifier, format_critical_failure_message


def test_critical_failure_message_lists_items():
    when = datetime(2024, 7, 1, 8, 30, tzinfo=pytz.utc)
    message = format_critical_failure_message("Pre-run check", "CNC Lathe 1", "operator-1",
                                              ["Guards fitted", "E-stop tested"], when)
    lines = message.splitlines()
    assert "Pre-run check on CNC Lathe 1 completed by operator-1" in lines[0]
    assert lines[1:] == ["• Guards fitted", "• E-stop tested"]


def test_unconfigured_notifier_does_not_send():
    notifier = TelegramNotifier(bot_token="", chat_id="")
    assert not notifier.configured
    assert asyncio.run(notifier.send_message("hello")) == {}
