"""Terminal output helpers: plain tables, JSON shaping and number formatting.

JSON output uses the exchange's camelCase field names for every record, so
``available_to_withdraw`` prints as ``availableToWithdraw``.
"""
import json
from dataclasses import fields, is_dataclass
from datetime import datetime, timezone
from typing import Any, List, Sequence


def format_table(headers: Sequence[str], rows: List[Sequence[str]]) -> str:
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(str(cell))) for w, cell in zip(widths, row)]
    lines = ["  ".join(f"{h:<{w}}" for h, w in zip(headers, widths))]
    lines.append("-" * (sum(widths) + 2 * (len(widths) - 1)))
    for row in rows:
        lines.append("  ".join(f"{str(cell):<{w}}" for cell, w in zip(row, widths)))
    return "\n".join(lines)


def camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def to_json_data(obj: Any) -> Any:
    """Convert records to JSON-ready lists/dicts.

    Objects with ``to_dict()`` use it; other dataclasses are walked field by
    field with camelCase keys. Tuples become lists.
    """
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if is_dataclass(obj) and not isinstance(obj, type):
        return {camel_case(f.name): to_json_data(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, (list, tuple)):
        return [to_json_data(item) for item in obj]
    if isinstance(obj, dict):
        return {k: to_json_data(v) for k, v in obj.items()}
    return obj


def format_json(obj: Any) -> str:
    return json.dumps(to_json_data(obj), indent=2)


def format_percent(value: str, digits: int = 2) -> str:
    """``"0.0123"`` -> ``"+1.23%"``; unparseable input is returned as-is."""
    try:
        num = float(value) * 100
    except ValueError:
        return value
    sign = "+" if num > 0 else ""
    return f"{sign}{num:.{digits}f}%"


def format_volume(value: str) -> str:
    """Group thousands, at most three decimals: ``"1234567.5"`` -> ``"1,234,567.5"``."""
    try:
        num = float(value)
    except ValueError:
        return value
    return f"{num:,.3f}".rstrip("0").rstrip(".")


def format_timestamp(ms: str) -> str:
    """Epoch milliseconds to ``YYYY-MM-DD HH:MM:SS`` UTC; ``-`` when missing."""
    try:
        num = int(ms)
    except ValueError:
        return "-"
    if num == 0:
        return "-"
    return datetime.fromtimestamp(num / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
