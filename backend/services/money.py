"""
Money canonicalization — reduces the many shapes a model emits for
money-bearing fields (numbers, strings, {type, amount} objects, scalars or
arrays) to one representation, and renders/aggregates that representation.

Coercion happens once, at the normalization boundary.  Display and sum helpers
also accept raw JSON values so they can be used on unnormalized data; they
route those through the same coercion first.
"""
import json
import logging
import math
import re
from typing import Any, Iterable, Optional

from models.schemas import ChargeEntry, LineItem, MoneyValue, TaggedAmount

logger = logging.getLogger("receipt_analyzer.money")

# A string we are confident is a plain amount:
#   "12.99"   "-5"   "$4.06"   "1,234.50"   "+.75"
DECIMAL_RE = re.compile(
    r'^(?P<sign>[-+])?\$?\s*(?P<num>\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?|\.\d+)$'
)

# Leading numeric prefix, parseFloat-style:  "3.45 USD" → 3.45,  "abc" → no match
LEADING_NUMBER_RE = re.compile(r'^\s*([-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?)')

MISSING = "-"


def _finite_float(value: Any) -> Optional[float]:
    """float(value) for real numbers that fit in a finite float, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _as_json_text(value: Any) -> str:
    return json.dumps(value, default=str)


def parse_decimal(text: str) -> Optional[float]:
    """Parse a string that is clearly a single amount.  Returns None otherwise."""
    m = DECIMAL_RE.match(text.strip())
    if not m:
        return None
    number = float(m.group("num").replace(",", ""))
    return -number if m.group("sign") == "-" else number


def _is_numeric(value: Any) -> bool:
    if isinstance(value, str):
        return parse_decimal(value) is not None
    return _finite_float(value) is not None


def _label(value: Any) -> Optional[str]:
    """A type/currency/name label: non-empty string, or a number rendered as text."""
    if isinstance(value, str):
        return value.strip() or None
    if _finite_float(value) is not None:
        return str(value)
    return None


# ── Coercion ──────────────────────────────────────────────────────────────────

def coerce_money(value: Any) -> Optional[MoneyValue]:
    """
    Resolve a raw JSON value into exactly one MoneyValue arm.

    - numbers (not booleans)          → Number (float)
    - plain decimal strings           → Number
    - any other string                → Text, verbatim
    - objects carrying "amount"       → Tagged (amount coerced, nested tags flattened)
    - objects without "amount", lists → Text holding their JSON
    - null                            → None
    """
    if value is None:
        return None
    if isinstance(value, TaggedAmount):
        return value
    if isinstance(value, str):
        parsed = parse_decimal(value)
        return parsed if parsed is not None else value
    number = _finite_float(value)
    if number is not None:
        return number
    if isinstance(value, dict) and "amount" in value:
        tag = _label(value.get("type")) or _label(value.get("currency"))
        amount = coerce_money(value["amount"])
        if isinstance(amount, TaggedAmount):
            tag = tag or amount.type
            amount = amount.amount
        return TaggedAmount(type=tag, amount=amount)
    return _as_json_text(value)


def coerce_charge_entry(value: Any) -> Optional[ChargeEntry]:
    if value is None:
        return None
    if isinstance(value, ChargeEntry):
        return value
    if isinstance(value, dict):
        return ChargeEntry(
            type=_label(value.get("type")),
            amount=coerce_money(value.get("amount")),
        )
    return ChargeEntry(amount=coerce_money(value))


def coerce_charges(value: Any) -> Optional[tuple[ChargeEntry, ...]]:
    """
    Canonicalize a taxes/discounts field to a sequence of ChargeEntry.

    A single object is wrapped in a one-element array.  A bare number (or
    numeric string) becomes one untyped entry.  Any other scalar (e.g. a
    string that isn't a number) collapses to an empty array.
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        entries = value
    elif isinstance(value, (dict, ChargeEntry)) or _is_numeric(value):
        entries = [value]
    else:
        logger.debug("Dropping malformed charge field %r", value)
        return ()
    return tuple(e for e in map(coerce_charge_entry, entries) if e is not None)


def coerce_quantity(value: Any) -> Optional[int]:
    """Whole quantities ≥ 1 survive; anything else (0, 1.5, "two") is treated as unknown."""
    number = parse_decimal(value) if isinstance(value, str) else _finite_float(value)
    if number is None or number < 1 or not number.is_integer():
        return None
    return int(number)


def coerce_line_item(value: Any) -> Optional[LineItem]:
    if isinstance(value, LineItem):
        return value
    if isinstance(value, dict):
        name = _label(value.get("name")) or _label(value.get("description")) or ""
        return LineItem(
            name=name,
            price=coerce_money(value.get("price")),
            quantity=coerce_quantity(value.get("quantity")),
        )
    if isinstance(value, str):
        if value.strip():
            return LineItem(name=value.strip())
    elif value is not None:
        # any other JSON value becomes the name as text
        return LineItem(name=_label(value) or _as_json_text(value))
    logger.debug("Dropping empty line item: %r", value)
    return None


def coerce_items(value: Any) -> Optional[tuple[LineItem, ...]]:
    if value is None:
        return None
    entries = value if isinstance(value, (list, tuple)) else [value]
    return tuple(i for i in map(coerce_line_item, entries) if i is not None)


# ── Aggregation ───────────────────────────────────────────────────────────────

def numeric_value(value: Any) -> float:
    """Best-effort number for aggregation; 0 when the value carries none."""
    if isinstance(value, (TaggedAmount, ChargeEntry)):
        return numeric_value(value.amount)
    if isinstance(value, dict):
        return numeric_value(coerce_money(value))
    if isinstance(value, str):
        parsed = parse_decimal(value)
        if parsed is not None:
            return parsed
        m = LEADING_NUMBER_RE.match(value)
        if not m:
            return 0.0
        number = float(m.group(1))
        return number if math.isfinite(number) else 0.0
    number = _finite_float(value)
    return number if number is not None else 0.0


def sum_charges(entries: Any) -> float:
    """
    Total of a taxes/discounts field: 0 for absent input, the summed numeric
    amounts for an array, the amount of a single tagged object, or a bare
    number itself.  Exactly-rounded summation, so entry order never matters.
    """
    if entries is None:
        return 0.0
    if isinstance(entries, (list, tuple)):
        return math.fsum(numeric_value(e) for e in entries)
    return numeric_value(entries)


# ── Display ───────────────────────────────────────────────────────────────────

def _format_amount(amount: Optional[MoneyValue]) -> str:
    if amount is None:
        return MISSING
    if isinstance(amount, float):
        return f"{amount:.2f}"
    return str(amount)


def _format_charge(entry: ChargeEntry) -> str:
    amount = format_money(entry.amount)
    return f"{entry.type}: {amount}" if entry.type else amount


def format_money(value: Any) -> str:
    """
    Display string for a money-bearing field.

    12.5                            → "12.50"
    {"type": "USD", "amount": 3}    → "$3.00"
    {"type": "EUR", "amount": 3}    → "3.00 EUR"
    [{"type": "Tax", "amount": 1}]  → "Tax: 1.00"   (entries joined by ", ")
    "see receipt"                   → "see receipt"
    None                            → "-"
    """
    if value is None:
        return MISSING
    if isinstance(value, (list, tuple)):
        charges: Iterable[Optional[ChargeEntry]] = map(coerce_charge_entry, value)
        return ", ".join(_format_charge(c) for c in charges if c is not None)
    if isinstance(value, ChargeEntry):
        return _format_charge(value)

    money = coerce_money(value)
    if isinstance(money, TaggedAmount):
        if money.amount is None:
            return MISSING
        text = _format_amount(money.amount)
        if money.type == "USD":
            return f"${text}"
        if money.type:
            return f"{text} {money.type}"
        return text
    return _format_amount(money)


def format_quantity(quantity: Optional[int]) -> str:
    """Multiplier suffix shown after an item name; empty for absent or 1."""
    if quantity is None or quantity <= 1:
        return ""
    return f" (x{quantity})"
