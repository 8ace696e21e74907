"""
Binance USDT-M Futures connector with retry and rate-limit handling.
"""

from __future__ import annotations
import logging
import time
from functools import wraps
from typing import Any, Dict, List, Optional

import pandas as pd

from binance.client import Client
from binance.exceptions import BinanceAPIException

from autotrader.core.errors import ExecutionError, MarketDataError
from autotrader.execution.base import ExchangeConnector, OrderResult
from autotrader.utils.exchange_filters import SymbolFilters

logger = logging.getLogger("autotrader.execution.binance")

_KLINE_COLUMNS = [
    "open_time", "open", "high", "low", "close", "volume",
    "close_time", "quote_av", "num_trades", "tb_base_av", "tb_quote_av", "ignore",
]


def retry_on_rate_limit(max_retries: int = 3, base_delay: float = 1.0):
    """Decorator: retry on 429 or 418 (rate limit) with exponential backoff."""
    def decorator(f):
        @wraps(f)
        def wrapped(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return f(*args, **kwargs)
                except BinanceAPIException as e:
                    if e.status_code in (429, 418) and attempt < max_retries - 1:
                        delay = base_delay * (2 ** attempt)
                        logger.warning("Rate limited, retry in %.1fs (attempt %d)", delay, attempt + 1)
                        time.sleep(delay)
                    else:
                        raise
            raise RuntimeError("unreachable")
        return wrapped
    return decorator


def _klines_frame(raw: List[list]) -> pd.DataFrame:
    df = pd.DataFrame(raw, columns=_KLINE_COLUMNS)
    df[["open", "high", "low", "close", "volume"]] = df[["open", "high", "low", "close", "volume"]].astype(float)
    df["time"] = pd.to_datetime(df["open_time"], unit="ms", utc=True)
    return df[["time", "open", "high", "low", "close", "volume"]]


class BinanceFuturesConnector(ExchangeConnector):
    """Binance USDT-M Futures connector (testnet and live)."""

    def __init__(self, api_key: str, api_secret: str, testnet: bool = True):
        self._client = Client(api_key, api_secret)
        if testnet:
            self._client.FUTURES_URL = "https://testnet.binancefuture.com/fapi"
            logger.info("Binance Futures: using TESTNET")
        else:
            logger.info("Binance Futures: using LIVE")
        self._filters: Dict[str, SymbolFilters] = {}

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def fetch_candles(self, symbol: str, interval: str, limit: int = 300) -> pd.DataFrame:
        try:
            raw = self._client.futures_klines(symbol=symbol, interval=interval, limit=limit)
        except BinanceAPIException as e:
            if e.status_code in (429, 418):
                raise
            raise MarketDataError(f"klines {symbol} {interval}: {e}", asset=symbol, original=e) from e
        return _klines_frame(raw)

    @retry_on_rate_limit(max_retries=3, base_delay=1.0)
    def fetch_daily_closes(self, symbol: str, days: int) -> pd.DataFrame:
        try:
            raw = self._client.futures_klines(symbol=symbol, interval="1d", limit=min(int(days), 1500))
        except BinanceAPIException as e:
            if e.status_code in (429, 418):
                raise
            raise MarketDataError(f"daily closes {symbol}: {e}", asset=symbol, original=e) from e
        return _klines_frame(raw)[["time", "close"]]

    @retry_on_rate_limit(max_retries=2)
    def get_margin_position_risk(self, symbol: Optional[str] = None) -> List[Dict[str, Any]]:
        if symbol:
            return self._client.futures_position_information(symbol=symbol)
        return self._client.futures_position_information()

    @retry_on_rate_limit(max_retries=2)
    def symbol_filters(self, symbol: str) -> SymbolFilters:
        if symbol not in self._filters:
            info = self._client.futures_exchange_info()
            match = next((s for s in info.get("symbols", []) if s.get("symbol") == symbol), None)
            self._filters[symbol] = SymbolFilters.from_symbol_info(match)
        return self._filters[symbol]

    def set_leverage(self, symbol: str, leverage: int) -> None:
        try:
            self._client.futures_change_leverage(symbol=symbol, leverage=leverage)
            logger.info("Leverage set to %sx for %s", leverage, symbol)
        except BinanceAPIException as e:
            logger.warning("Could not set leverage: %s", e)

    def place_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        reduce_only: bool = False,
        client_tag: Optional[str] = None,
    ) -> OrderResult:
        """Market order rounded to the lot step. Rejections raise ExecutionError."""
        qty = self.symbol_filters(symbol).round_quantity(quantity)
        if qty <= 0:
            raise ExecutionError(f"quantity {quantity} below lot size for {symbol}", symbol=symbol)
        params: Dict[str, Any] = {"symbol": symbol, "side": side, "type": "MARKET", "quantity": str(qty)}
        if reduce_only:
            params["reduceOnly"] = "true"
        if client_tag:
            params["newClientOrderId"] = client_tag
        try:
            res = self._client.futures_create_order(**params)
        except BinanceAPIException as e:
            logger.exception("Binance order error: %s", e)
            raise ExecutionError(f"Binance rejected {side} {qty} {symbol}: {e}", symbol=symbol, original=e) from e
        fill = float(res.get("avgPrice") or res.get("price") or 0.0) or None
        return OrderResult(success=True, order_id=str(res.get("orderId")), fill_price=fill, quantity=qty)
