"""Telegram notifications for trading decisions and executions. Never log token or chat_id."""

from __future__ import annotations
import logging
import threading
from typing import Any, List, Mapping, Optional

import requests

from autotrader.execution.base import TradingNotifier

logger = logging.getLogger("autotrader.utils.telegram")


def send_telegram(text: str, bot_token: str = "", chat_id: str = "") -> bool:
    """Send message to Telegram. Returns True on success, False when unconfigured or rejected."""
    if not bot_token or not chat_id:
        logger.debug("Telegram not configured, skipping message (len=%d)", len(text))
        return False
    try:
        url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        r = requests.post(url, json={"chat_id": chat_id, "text": text}, timeout=10)
    except requests.RequestException as e:
        logger.warning("Telegram error: %s", e)
        return False
    if r.status_code != 200:
        logger.warning("Telegram send failed: %s %s", r.status_code, r.text[:200])
        return False
    return True


def _fmt_number(value: Any) -> str:
    if isinstance(value, (int, float)):
        return f"{value:,.4f}".rstrip("0").rstrip(".")
    return str(value)


def format_compliance_summary(compliance: Optional[Mapping[str, Any]]) -> Optional[str]:
    """'Risk blocked: dailyLoss Daily loss ... (limit 100, value 120)'; None when cleared."""
    if not compliance:
        return None
    status = compliance.get("status") or ""
    if status in ("", "cleared"):
        return None
    prefix = {"blocked": "Risk blocked", "scaled": "Risk adjusted"}.get(status, "Risk flag")
    details = []
    for breach in compliance.get("breaches") or []:
        parts = [p for p in (breach.get("type"), breach.get("message")) if p]
        extras = [f"{k} {_fmt_number(breach[k])}" for k in ("limit", "value") if breach.get(k) is not None]
        if extras:
            parts.append(f"({', '.join(extras)})")
        if parts:
            details.append(" ".join(parts))
    return f"{prefix}: {'; '.join(details)}" if details else prefix


def format_execution_message(payload: Mapping[str, Any]) -> str:
    label = payload.get("asset_key") or payload.get("symbol") or "asset"
    status = payload.get("status", "executed")
    head = f"{label} {payload.get('action', '?')} {payload.get('direction', '')}".strip()
    lines = [f"[{status.upper()}] {head}"]
    if payload.get("quantity") is not None:
        price = payload.get("price")
        lines.append(f"qty={_fmt_number(payload['quantity'])}" + (f" @ {_fmt_number(price)}" if price else ""))
    if payload.get("reason"):
        lines.append(f"reason: {payload['reason']}")
    summary = format_compliance_summary(payload.get("compliance"))
    if summary:
        lines.append(summary)
    return "\n".join(lines)


def format_decision_message(payload: Mapping[str, Any]) -> str:
    label = payload.get("asset_key") or payload.get("symbol") or "asset"
    timeframe = f" {payload['timeframe']}" if payload.get("timeframe") else ""
    confidence = payload.get("confidence")
    conf = f" ({confidence:.0%})" if isinstance(confidence, (int, float)) else ""
    lines = [f"{label}{timeframe}: {payload.get('action', 'flat')}{conf} posture={payload.get('posture', 'n/a')}"]
    reasons = payload.get("reasons") or []
    if reasons:
        lines.append("; ".join(reasons))
    return "\n".join(lines)


class TelegramNotifier(TradingNotifier):
    """Posts decision and execution reports to one Telegram chat, each on a daemon thread."""

    def __init__(self, bot_token: str = "", chat_id: str = ""):
        self._bot_token = bot_token
        self._chat_id = chat_id
        self._threads: List[threading.Thread] = []

    @property
    def configured(self) -> bool:
        return bool(self._bot_token and self._chat_id)

    def _post(self, text: str) -> None:
        if not self.configured:
            return
        self._threads = [t for t in self._threads if t.is_alive()]
        thread = threading.Thread(
            target=send_telegram, args=(text, self._bot_token, self._chat_id), name="TelegramPost", daemon=True,
        )
        self._threads.append(thread)
        thread.start()

    def flush(self, timeout: float = 15.0) -> None:
        """Wait for pending posts; call before the process exits."""
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    def report_trading_decision(self, payload: Mapping[str, Any]) -> None:
        self._post(format_decision_message(payload))

    def report_trading_execution(self, payload: Mapping[str, Any]) -> None:
        self._post(format_execution_message(payload))
