"""
Receipt View — the display model a frontend renders for a StructuredReceipt.
All strings are final; the frontend does no formatting of its own.
"""
from typing import Optional

from models.schemas import ChargeEntry, StructuredReceipt
from services.money import MISSING, format_money, format_quantity, sum_charges


def _charge_rows(entries: tuple[ChargeEntry, ...], default_label: str, sign: str = "") -> list[dict]:
    rows = []
    for entry in entries:
        amount = format_money(entry.amount)
        if entry.amount is not None:
            amount = sign + amount
        rows.append({"label": entry.type or default_label, "amount": amount})
    return rows


def build_receipt_view(receipt: Optional[StructuredReceipt]) -> Optional[dict]:
    if receipt is None:
        return None
    if receipt.is_degraded:
        return {"raw": receipt.raw, "error": receipt.error}

    view = {
        "merchant": receipt.merchant,
        "date": receipt.date,
        "total": format_money(receipt.total) if receipt.total is not None else None,
        "payment_method": receipt.payment_method,
        "items": [
            {
                "label": f"{item.name or MISSING}{format_quantity(item.quantity)}",
                "price": format_money(item.price),
            }
            for item in receipt.items or ()
        ],
        "discounts": None,
        "taxes": None,
    }

    if receipt.discounts is not None:
        rows = _charge_rows(receipt.discounts, "Discount", sign="-")
        if len(receipt.discounts) > 1:
            rows.append({
                "label": "Total Discounts",
                "amount": f"-{sum_charges(receipt.discounts):.2f}",
            })
        view["discounts"] = rows

    if receipt.taxes is not None:
        view["taxes"] = _charge_rows(receipt.taxes, "Tax")

    return view
