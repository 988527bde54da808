"""
Response Normalizer — turns a model completion into a StructuredReceipt.

normalize() never raises.  A completion that is not a JSON object (after
stripping code fences) degrades to {raw, error}; no regex salvage of malformed
JSON is attempted.  A parsed object has each field coerced independently into
its canonical shape; absent fields stay absent.
"""
import json
import logging
import re
from typing import Any, Optional

from models.schemas import ChargeEntry, StructuredReceipt
from services.errors import ParseError
from services.money import coerce_charges, coerce_items, coerce_money

logger = logging.getLogger("receipt_analyzer.normalize")

PARSE_ERROR_MESSAGE = "Could not parse structured data"

FENCE_RE = re.compile(r'```(?:json)?', re.IGNORECASE)

# Labels that suggest the model reported a rate instead of a currency amount
RATE_HINT_RE = re.compile(r'%|\brate\b|\bpercent', re.IGNORECASE)


def strip_code_fences(raw: str) -> str:
    """Remove ```json / ``` markers anywhere in the text, then surrounding whitespace."""
    return FENCE_RE.sub("", raw).strip()


def _reject_constant(name: str):
    raise ValueError(f"non-standard JSON constant {name}")


def parse_completion(raw: str) -> dict:
    """Strict JSON parse of a completion.  Raises ParseError unless it yields an object."""
    cleaned = strip_code_fences(raw)
    try:
        # NaN, Infinity and -Infinity are not JSON
        data = json.loads(cleaned, parse_constant=_reject_constant)
    except (ValueError, RecursionError) as e:
        raise ParseError(f"Completion is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Completion is JSON {type(data).__name__}, expected an object")
    return data


def _coerce_text(value: Any) -> Optional[str]:
    """Strings pass through; numbers render as text; other JSON values keep their JSON text."""
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return json.dumps(value)


def _flag_rate_ambiguity(field: str, entries: Optional[tuple[ChargeEntry, ...]]) -> None:
    """Amounts are treated as currency; log entries that look like rates so they can be reviewed."""
    for entry in entries or ():
        looks_like_rate = (
            (entry.type and RATE_HINT_RE.search(entry.type))
            or (isinstance(entry.amount, str) and entry.amount.rstrip().endswith("%"))
        )
        if looks_like_rate:
            logger.warning(
                "%s entry %r may be a rate rather than an amount; treating amount as currency",
                field, entry.type or entry.amount,
            )


def degraded(raw: str) -> StructuredReceipt:
    return StructuredReceipt(raw=raw, error=PARSE_ERROR_MESSAGE)


def coerce_receipt(data: dict) -> StructuredReceipt:
    """Build the canonical record from a parsed completion object."""
    taxes = coerce_charges(data.get("taxes"))
    discounts = coerce_charges(data.get("discounts"))
    _flag_rate_ambiguity("taxes", taxes)
    _flag_rate_ambiguity("discounts", discounts)

    return StructuredReceipt(
        merchant=_coerce_text(data.get("merchant")),
        date=_coerce_text(data.get("date")),
        total=coerce_money(data.get("total")),
        items=coerce_items(data.get("items")),
        payment_method=_coerce_text(data.get("paymentMethod")),
        taxes=taxes,
        discounts=discounts,
    )


def normalize(raw: str) -> StructuredReceipt:
    """Completion text → StructuredReceipt.  Always returns a record."""
    try:
        data = parse_completion(raw)
    except ParseError as e:
        logger.warning("Failed to parse JSON from completion: %s", e)
        logger.debug("Unparsed completion: %r", raw)
        return degraded(raw)

    receipt = coerce_receipt(data)
    logger.debug(
        "Normalized receipt: merchant=%r items=%d taxes=%d discounts=%d",
        receipt.merchant, len(receipt.items or ()),
        len(receipt.taxes or ()), len(receipt.discounts or ()),
    )
    return receipt
