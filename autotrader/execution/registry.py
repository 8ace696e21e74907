"""Typed registry of exchange connectors, populated once at startup."""

from __future__ import annotations
from typing import Dict, Iterator

from autotrader.core.errors import ConnectorNotFoundError
from autotrader.execution.base import ExchangeConnector


class ConnectorRegistry:
    """Maps exchange names ("binance", ...) to connectors. Lookup misses raise."""

    def __init__(self, connectors: Dict[str, ExchangeConnector] | None = None):
        self._connectors: Dict[str, ExchangeConnector] = {}
        for name, connector in (connectors or {}).items():
            self.register(name, connector)

    def register(self, name: str, connector: ExchangeConnector) -> None:
        self._connectors[name.strip().lower()] = connector

    def resolve(self, name: str) -> ExchangeConnector:
        key = (name or "").strip().lower()
        try:
            return self._connectors[key]
        except KeyError:
            raise ConnectorNotFoundError(key) from None

    def __contains__(self, name: str) -> bool:
        return (name or "").strip().lower() in self._connectors

    def __iter__(self) -> Iterator[str]:
        return iter(self._connectors)
