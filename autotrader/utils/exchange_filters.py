"""Lot size filter from exchange symbol info."""

from __future__ import annotations
import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class SymbolFilters:
    min_qty: float = 0.001
    lot_step: float = 0.0001

    @classmethod
    def from_symbol_info(cls, symbol_info: Optional[dict]) -> "SymbolFilters":
        """Read LOT_SIZE; defaults when info is missing."""
        base = cls()
        if not symbol_info:
            return base
        min_qty, lot_step = base.min_qty, base.lot_step
        for f in symbol_info.get("filters", []):
            if f.get("filterType") == "LOT_SIZE":
                min_qty = float(f.get("minQty", min_qty))
                lot_step = float(f.get("stepSize", lot_step))
        return cls(min_qty=min_qty, lot_step=lot_step)

    def round_quantity(self, qty: float) -> float:
        """Floor to lot step; 0 when below the minimum quantity."""
        if qty <= 0 or self.lot_step <= 0:
            return 0.0
        # Nudge before flooring so 0.3 / 0.1 does not land on 2.999...
        rounded = math.floor(qty / self.lot_step + 1e-9) * self.lot_step
        if rounded < self.min_qty:
            return 0.0
        return round(rounded, 8)
