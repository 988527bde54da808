"""
Shared fixtures for backend tests.

No test talks to Anthropic or runs Tesseract: the requestor's extract() is an
AsyncMock returning a canned completion, and OCR is patched where needed.
"""
import json

import pytest
from unittest.mock import AsyncMock

from services.extraction_service import ExtractionRequestor

# ── Canned completions ───────────────────────────────────────────────────────

TRANSCRIPT = "STORE A\n2023-04-15\nMilk 2 $3.50\nTax 8% $0.56\nTotal $4.06"

EXAMPLE_RECEIPT = {
    "merchant": "STORE A",
    "date": "2023-04-15",
    "total": 4.06,
    "items": [{"name": "Milk", "price": 3.50, "quantity": 2}],
    "paymentMethod": "Cash",
    "taxes": [{"type": "Sales Tax", "amount": 0.56}],
    "discounts": [],
}

EXAMPLE_COMPLETION = json.dumps(EXAMPLE_RECEIPT, indent=2)


@pytest.fixture
def requestor():
    """A configured requestor whose network call is replaced by an AsyncMock."""
    req = ExtractionRequestor(api_key="sk-test")
    req.extract = AsyncMock(return_value=EXAMPLE_COMPLETION)
    return req
