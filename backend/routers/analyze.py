"""
Analyze Router

POST /api/analyze-receipt  — transcript text in, StructuredReceipt JSON out

Errors use an {"error": ...} body:
  400  missing/blank text or a body that isn't a JSON object
  4xx/5xx  upstream status passed through when the completion service fails
  502  completion service unreachable
  503  completion credential not configured
  500  anything unexpected
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from services.errors import ConfigurationError, NetworkError, UpstreamError
from services.extraction_service import ExtractionRequestor, get_requestor
from services.normalizer import normalize

logger = logging.getLogger("receipt_analyzer.api")
router = APIRouter()


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@router.post("/analyze-receipt")
async def analyze_receipt(
    request: Request,
    requestor: ExtractionRequestor = Depends(get_requestor),
):
    """
    Run the extraction prompt on the posted transcript and return the
    normalized record.  A completion that isn't JSON still returns 200 with
    {raw, error} so the caller always has something to display.
    """
    try:
        payload = await request.json()
    except ValueError:
        return error_response("Invalid request body", 400)

    text = payload.get("text") if isinstance(payload, dict) else None
    if not isinstance(text, str) or not text.strip():
        return error_response("No text provided", 400)

    try:
        completion = await requestor.extract(text)
        receipt = normalize(completion)
    except UpstreamError as e:
        logger.error("Upstream error %s: %s", e.status_code, e.body or e)
        return error_response("Failed to analyze receipt", e.status_code)
    except NetworkError as e:
        logger.error("Completion service unreachable: %s", e)
        return error_response("Failed to analyze receipt", 502)
    except ConfigurationError as e:
        logger.error("Receipt analysis not configured: %s", e)
        return error_response("Receipt analysis is not available", 503)
    except Exception:
        logger.exception("Server error while analyzing receipt")
        return error_response("Failed to process request", 500)

    return JSONResponse(receipt.to_wire())
