"""Input validation for user-supplied symbols, categories and amounts.

All checks raise ``ValueError`` with a message fit for the terminal.
"""
import math
import re

CATEGORIES = ("linear", "spot", "inverse", "option")
BOOK_DEPTHS = (1, 50, 200, 500)

_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9]+$")


def validate_symbol(value: str) -> str:
    """Trim and uppercase a symbol; only ``A-Z`` and ``0-9`` are allowed."""
    symbol = value.strip()
    if not symbol:
        raise ValueError("Symbol cannot be empty")
    symbol = symbol.upper()
    if not _SYMBOL_PATTERN.match(symbol):
        raise ValueError("Symbol must contain only alphanumeric characters")
    return symbol


def validate_category(value: str) -> str:
    if value not in CATEGORIES:
        raise ValueError(f'Invalid category "{value}". Must be one of: {", ".join(CATEGORIES)}')
    return value


def validate_positive_number(value: str, name: str) -> str:
    """Check ``value`` parses as a finite number > 0; returns it unchanged.

    Amounts travel to the exchange as strings, so the original text is kept.
    """
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be a valid number")
    if not value.strip() or not math.isfinite(parsed):
        raise ValueError(f"{name} must be a valid number")
    if parsed <= 0:
        raise ValueError(f"{name} must be a positive number")
    return value


def validate_book_depth(depth: int) -> int:
    if depth not in BOOK_DEPTHS:
        raise ValueError(f"Depth must be one of: {', '.join(str(d) for d in BOOK_DEPTHS)}")
    return depth


def to_symbol(coin: str, category: str) -> str:
    """Expand a bare coin to its USDT pair outside spot: ``BTC`` -> ``BTCUSDT``.

    Symbols already naming a quote (``BTCUSDT``, ``BTCUSD``, ``BTCPERP``) pass
    through.
    """
    symbol = validate_symbol(coin)
    if category == "spot" or "USD" in symbol or "PERP" in symbol:
        return symbol
    return f"{symbol}USDT"
