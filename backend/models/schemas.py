from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional, Tuple, Union


# ── Money ──────────────────────────────────────────────
class TaggedAmount(BaseModel):
    """An amount annotated with a currency code ("USD") or a label ("Sales Tax")."""
    model_config = ConfigDict(frozen=True)

    type: Optional[str] = None
    amount: Optional[Union[float, str]] = None


# Number | Text | Tagged.  A str here is always text that did not parse as a number.
MoneyValue = Union[float, str, TaggedAmount]


class ChargeEntry(BaseModel):
    """One tax or discount line."""
    model_config = ConfigDict(frozen=True)

    type: Optional[str] = None
    amount: Optional[MoneyValue] = None


# ── Line Item ──────────────────────────────────────────
class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    price: Optional[MoneyValue] = None
    quantity: Optional[int] = Field(default=None, ge=1)


# ── Receipt ────────────────────────────────────────────
class StructuredReceipt(BaseModel):
    """
    Result of one extraction attempt.  Either a best-effort structured record
    (every field optional) or a degraded record carrying only raw + error.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    merchant: Optional[str] = None
    date: Optional[str] = None
    total: Optional[MoneyValue] = None
    items: Optional[Tuple[LineItem, ...]] = None
    payment_method: Optional[str] = Field(default=None, alias="paymentMethod")
    taxes: Optional[Tuple[ChargeEntry, ...]] = None
    discounts: Optional[Tuple[ChargeEntry, ...]] = None
    raw: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_degraded(self) -> bool:
        return self.error is not None

    def to_wire(self) -> dict[str, Any]:
        """JSON body as returned by the extraction endpoint (absent fields omitted)."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ── Requests / Sessions ────────────────────────────────
class AnalyzeRequest(BaseModel):
    text: Optional[str] = None


class SessionCreated(BaseModel):
    session_id: str


class SessionSnapshot(BaseModel):
    session_id: str
    text: str
    progress: float
    is_processing: bool
    is_analyzing: bool
    error: Optional[str] = None
    receipt: Optional[dict] = None
    view: Optional[dict] = None
