"""
Error taxonomy for the receipt analysis pipeline.

Routers translate these into short user-facing messages plus a status code;
ParseError never leaves the normalizer (it degrades to a raw-text record).
"""
from typing import Optional


class AnalysisError(Exception):
    """Base class for failures surfaced by the analysis pipeline."""
    pass


class ValidationError(AnalysisError):
    """Empty or missing transcript; rejected before any network call."""
    pass


class UpstreamError(AnalysisError):
    """Non-success response from the completion service (or a timeout)."""

    def __init__(self, message: str, status_code: int = 502, body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class NetworkError(AnalysisError):
    """Transport-level failure: no response at all."""
    pass


class ParseError(AnalysisError):
    """Completion text is not a JSON object after fence stripping."""
    pass


class ConfigurationError(AnalysisError):
    """The completion service credential is not configured."""
    pass
