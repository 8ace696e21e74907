"""Timeframe string helpers."""

_UNIT_MINUTES = {"m": 1, "h": 60, "d": 60 * 24, "w": 60 * 24 * 7}


def timeframe_minutes(tf: str) -> int:
    """Convert Binance-style timeframe (e.g. '5m', '4h', '1d', '1w') to minutes."""
    tf = tf.strip().lower()
    unit = tf[-1:] if tf else ""
    if unit not in _UNIT_MINUTES or not tf[:-1].isdigit():
        raise ValueError(f"Unsupported timeframe: {tf}")
    return int(tf[:-1]) * _UNIT_MINUTES[unit]


def same_timeframe(a: str, b: str) -> bool:
    """True when both strings name the same bar length ('240m' == '4h'). Unparseable never match."""
    try:
        return timeframe_minutes(a) == timeframe_minutes(b)
    except (ValueError, AttributeError):
        return False
