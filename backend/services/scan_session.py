"""
Scan sessions — server-side state for one user's scan → analyze workflow.

One OCR pass, optionally followed by one extraction call.  A new upload or a
manual re-analysis starts a fresh request without cancelling the one in
flight; every request takes a generation token and only the newest token may
publish its result (last request wins).
"""
import asyncio
import logging
import uuid
from collections import OrderedDict
from typing import Optional

from models.schemas import SessionSnapshot, StructuredReceipt
from services.errors import ConfigurationError, NetworkError, UpstreamError, ValidationError
from services.extraction_service import ExtractionRequestor
from services.normalizer import normalize
from services.ocr_service import DEFAULT_LANG, OCRError, extract_text_from_image
from services.receipt_view import build_receipt_view

logger = logging.getLogger("receipt_analyzer.session")

OCR_FAILED_MESSAGE = "Error processing image. Please try again."
ANALYSIS_FAILED_MESSAGE = "Failed to analyze receipt. Please try again."


class ScanSession:
    def __init__(self, session_id: str):
        self.session_id = session_id
        self.text = ""
        self.progress = 0.0
        self.is_processing = False
        self.is_analyzing = False
        self.error: Optional[str] = None
        self.receipt: Optional[StructuredReceipt] = None
        self.generation = 0
        self._ocr_generation = 0

    # ── Generation tokens ────────────────────────────────────────────────────

    def _begin(self) -> int:
        self.generation += 1
        return self.generation

    def _is_current(self, token: int) -> bool:
        return token == self.generation

    def _set_progress(self, token: int, fraction: float):
        if self._is_current(token):
            self.progress = min(1.0, max(self.progress, fraction))

    def _end_ocr(self, token: int):
        # a superseded OCR pass still ends processing unless a newer upload owns it
        if token == self._ocr_generation:
            self.is_processing = False

    # ── Operations ───────────────────────────────────────────────────────────

    async def process_image(self, image_bytes: bytes, requestor: ExtractionRequestor) -> bool:
        """
        OCR an uploaded image, then analyze the transcript if it isn't blank.
        Returns False when the result was superseded or the OCR step failed.
        """
        token = self._begin()
        self._ocr_generation = token
        self.text = ""
        self.progress = 0.0
        self.error = None
        self.receipt = None
        self.is_processing = True
        self.is_analyzing = False

        loop = asyncio.get_running_loop()

        def on_progress(fraction: float):
            # called from the OCR worker thread
            loop.call_soon_threadsafe(self._set_progress, token, fraction)

        try:
            text = await asyncio.to_thread(
                extract_text_from_image, image_bytes, DEFAULT_LANG, on_progress,
            )
        except OCRError as e:
            logger.error("OCR failed for session %s: %s", self.session_id, e)
            return self._fail_ocr(token)
        except Exception:
            logger.exception("Unexpected OCR failure for session %s", self.session_id)
            return self._fail_ocr(token)
        finally:
            self._end_ocr(token)

        if not self._is_current(token):
            logger.info("Session %s: discarding stale OCR result (generation %d < %d)",
                        self.session_id, token, self.generation)
            return False

        self.text = text
        self.progress = 1.0

        if not text.strip():
            logger.info("Session %s: OCR produced no text, skipping analysis", self.session_id)
            return True
        return await self.analyze(requestor)

    def _fail_ocr(self, token: int) -> bool:
        if self._is_current(token):
            self.error = OCR_FAILED_MESSAGE
        return False

    async def analyze(self, requestor: ExtractionRequestor, text: Optional[str] = None) -> bool:
        """
        Run extraction on `text` (default: the current transcript).
        Raises ValidationError for a blank transcript, before any network call.
        Returns True when this request's result was published.
        """
        candidate = self.text if text is None else text
        if not candidate.strip():
            raise ValidationError("No text provided")
        self.text = candidate

        token = self._begin()
        self.is_analyzing = True
        self.error = None

        try:
            completion = await requestor.extract(self.text)
        except (UpstreamError, NetworkError, ConfigurationError) as e:
            logger.error("Analysis failed for session %s: %s", self.session_id, e)
            return self._fail_analysis(token)
        except Exception:
            logger.exception("Unexpected analysis failure for session %s", self.session_id)
            return self._fail_analysis(token)

        receipt = normalize(completion)
        if not self._is_current(token):
            logger.info("Session %s: discarding stale analysis (generation %d < %d)",
                        self.session_id, token, self.generation)
            return False

        self.receipt = receipt
        self.error = receipt.error
        self.is_analyzing = False
        return True

    def _fail_analysis(self, token: int) -> bool:
        if self._is_current(token):
            self.error = ANALYSIS_FAILED_MESSAGE
            self.is_analyzing = False
        return False

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            text=self.text,
            progress=self.progress,
            is_processing=self.is_processing,
            is_analyzing=self.is_analyzing,
            error=self.error,
            receipt=self.receipt.to_wire() if self.receipt else None,
            view=build_receipt_view(self.receipt),
        )


class SessionStore:
    """In-memory session registry; the least recently used session is evicted past the cap."""

    def __init__(self, max_sessions: int = 256):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, ScanSession]" = OrderedDict()

    def create(self) -> ScanSession:
        session = ScanSession(uuid.uuid4().hex)
        self._sessions[session.session_id] = session
        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug("Evicted session %s", evicted)
        return session

    def get(self, session_id: str) -> Optional[ScanSession]:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
        return session

    def __len__(self) -> int:
        return len(self._sessions)
