"""
Extraction Service — sends a receipt transcript to Claude with a fixed JSON
contract and returns the raw completion text.

This is a pure transport boundary: no retries, no parsing.  Stripping and
parsing happen in services.normalizer; the caller decides whether to retry.
"""
import logging
import os
from dataclasses import dataclass
from typing import Optional

import anthropic

from services.errors import ConfigurationError, NetworkError, UpstreamError

logger = logging.getLogger("receipt_analyzer.extract")

DEFAULT_MODEL = "claude-haiku-4-5"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class GenerationConfig:
    """
    Low-randomness sampling so repeated calls on the same transcript converge
    on the same structure.  top_p is left unset by default: current Claude
    models reject requests that set both temperature and top_p.
    """
    temperature: float = 0.1
    top_k: int = 20
    top_p: Optional[float] = None
    max_tokens: int = 1024

    def as_request_params(self) -> dict:
        params = {
            "temperature": self.temperature,
            "top_k": self.top_k,
            "max_tokens": self.max_tokens,
        }
        if self.top_p is not None:
            params["top_p"] = self.top_p
        return params


EXAMPLE_RESPONSE = """{
  "merchant": "Store Name",
  "date": "2023-04-15",
  "total": 42.99,
  "items": [
    {
      "name": "Product Name",
      "price": 12.99,
      "quantity": 2
    }
  ],
  "paymentMethod": "Credit Card",
  "taxes": [
    {
      "type": "Sales Tax",
      "amount": 3.45
    }
  ],
  "discounts": [
    {
      "type": "Member Discount",
      "amount": 5.00
    }
  ]
}"""


def build_prompt(text: str) -> str:
    """Embed the verbatim transcript in the extraction contract."""
    return f"""Analyze this receipt text and organize it into a structured format.

RECEIPT TEXT:
{text}

INSTRUCTIONS:
1. Extract the following information in a clean, structured JSON format:
   - merchant: The store or business name (string)
   - date: The purchase date in YYYY-MM-DD format (if unclear, use "Unknown")
   - total: The total amount as a number (without currency symbols)
   - items: An array of purchased items, each with:
     * name: Item description (string)
     * price: Numeric price (without currency symbols)
     * quantity: Whole-number quantity if available
   - paymentMethod: Method of payment (credit, cash, etc.) as a string
   - taxes: An array of objects, each with "type" (string) and "amount" (number)
   - discounts: An array of objects, each with "type" (string) and "amount" (number)

2. For prices, taxes, and discounts:
   - Extract numeric values only (remove $ or other currency symbols)
   - "amount" is always the charged currency amount, never a percentage rate.
     If a line shows both a rate and an amount (e.g. "Tax 8% $0.56"), use the amount.
   - If a value cannot be determined, use null instead of leaving it blank

3. For dates:
   - Try to standardize in YYYY-MM-DD format
   - If only partial date information is available, make your best guess
   - If completely unclear, use "Unknown"

4. For items:
   - Separate distinct items even if formatting is unclear
   - Include quantity if available
   - Extract price as a numeric value

EXAMPLE OUTPUT FORMAT:
{EXAMPLE_RESPONSE}

Return ONLY the JSON object without any additional text, markdown formatting, or code blocks."""


def _completion_text(message) -> str:
    """Concatenate the text blocks of a Messages API response ("" when there are none)."""
    parts = [
        block.text for block in (message.content or [])
        if getattr(block, "type", None) == "text"
    ]
    return "".join(parts)


class ExtractionRequestor:
    """One prompt in, one completion out."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        generation: Optional[GenerationConfig] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.generation = generation or GenerationConfig()

    def _client(self) -> anthropic.AsyncAnthropic:
        if not self.api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY not set")
        # max_retries=0: failures surface to the caller, never retried here
        return anthropic.AsyncAnthropic(
            api_key=self.api_key,
            timeout=self.timeout,
            max_retries=0,
        )

    async def extract(self, text: str) -> str:
        """
        Send `text` (already validated non-blank by the caller) and return the
        completion text unmodified.

        Raises UpstreamError for non-2xx responses and timeouts, NetworkError
        when no response arrived, ConfigurationError without a credential.
        """
        client = self._client()
        prompt = build_prompt(text)
        logger.info("Requesting extraction from %s (%d chars of transcript)", self.model, len(text))

        try:
            message = await client.messages.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                **self.generation.as_request_params(),
            )
        except anthropic.APITimeoutError as e:
            logger.error("Completion request timed out after %.0fs", self.timeout)
            raise UpstreamError("Completion request timed out", status_code=504) from e
        except anthropic.APIStatusError as e:
            logger.error("Completion API error %s: %s", e.status_code, e.message)
            raise UpstreamError(
                "Completion service returned an error",
                status_code=e.status_code,
                body=e.message,
            ) from e
        except anthropic.APIConnectionError as e:
            logger.error("Completion API unreachable: %s", e)
            raise NetworkError(str(e)) from e

        completion = _completion_text(message)
        logger.debug("Completion (%d chars, stop_reason=%s)", len(completion), message.stop_reason)
        return completion


def get_requestor() -> ExtractionRequestor:
    """FastAPI dependency: a requestor configured from the environment."""
    return ExtractionRequestor(
        api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
        model=os.environ.get("EXTRACTION_MODEL", DEFAULT_MODEL),
        timeout=float(os.environ.get("EXTRACTION_TIMEOUT", DEFAULT_TIMEOUT)),
    )
