"""
Sessions Router

POST /api/sessions                 — start a scan session
GET  /api/sessions/{id}            — poll state: transcript, OCR progress, receipt, display view
POST /api/sessions/{id}/scan       — upload an image: OCR, then auto-analyze
POST /api/sessions/{id}/analyze    — manual re-analysis of the current (or supplied) transcript
"""
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from models.schemas import AnalyzeRequest, SessionCreated, SessionSnapshot
from services.errors import ValidationError
from services.extraction_service import ExtractionRequestor, get_requestor
from services.scan_session import ScanSession, SessionStore

logger = logging.getLogger("receipt_analyzer.api")
router = APIRouter()

_store = SessionStore(max_sessions=int(os.environ.get("MAX_SESSIONS", "256")))


def get_store() -> SessionStore:
    """Dependency: the process-wide session registry."""
    return _store


def _get_session(session_id: str, store: SessionStore) -> ScanSession:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session


@router.post("", response_model=SessionCreated, status_code=201)
async def create_session(store: SessionStore = Depends(get_store)):
    session = store.create()
    logger.debug("Created session %s", session.session_id)
    return SessionCreated(session_id=session.session_id)


@router.get("/{session_id}", response_model=SessionSnapshot)
async def get_session(session_id: str, store: SessionStore = Depends(get_store)):
    return _get_session(session_id, store).snapshot()


@router.post("/{session_id}/scan", response_model=SessionSnapshot)
async def scan_receipt(
    session_id: str,
    file: UploadFile = File(...),
    store: SessionStore = Depends(get_store),
    requestor: ExtractionRequestor = Depends(get_requestor),
):
    """
    OCR the uploaded image and analyze the transcript.  Failures are reported
    in the snapshot's `error` field; the request itself still succeeds.
    """
    session = _get_session(session_id, store)
    contents = await file.read()
    if not contents:
        raise HTTPException(status_code=400, detail="Empty file")

    await session.process_image(contents, requestor)
    return session.snapshot()


@router.post("/{session_id}/analyze", response_model=SessionSnapshot)
async def reanalyze(
    session_id: str,
    body: Optional[AnalyzeRequest] = None,
    store: SessionStore = Depends(get_store),
    requestor: ExtractionRequestor = Depends(get_requestor),
):
    session = _get_session(session_id, store)
    try:
        await session.analyze(requestor, text=body.text if body else None)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return session.snapshot()
