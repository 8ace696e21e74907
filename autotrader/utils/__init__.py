"""Utils: Telegram notifier, timeframes, exchange filters."""

from autotrader.utils.telegram import TelegramNotifier, send_telegram
from autotrader.utils.timeframes import timeframe_minutes, same_timeframe

__all__ = ["TelegramNotifier", "send_telegram", "timeframe_minutes", "same_timeframe"]
