"""
Error Taxonomy
==============

Every failure that reaches a caller is a RecommendationError carrying a
remediation kind, so the boundary can tell "try again shortly" apart from
"try a different input" and "service misconfigured".
"""

from typing import Optional

RETRY_LATER = "retry_later"
DIFFERENT_INPUT = "different_input"
MISCONFIGURED = "misconfigured"
INTERNAL = "internal"


class RecommendationError(Exception):
    """Base class for errors surfaced by the recommendation pipeline."""

    remediation = INTERNAL

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.service = service


class UpstreamError(RecommendationError):
    """An external service (vision, search, features) failed."""

    remediation = RETRY_LATER


class UpstreamUnavailable(UpstreamError):
    """Service unreachable, timed out, or returned a server error."""


class UpstreamRateLimited(UpstreamError):
    """Service is throttling us; ``retry_after`` is the suggested wait in seconds."""

    def __init__(self, message: str, retry_after: int = 60, service: Optional[str] = None):
        super().__init__(message, service=service)
        self.retry_after = retry_after


class UpstreamAuthError(UpstreamError):
    """Credentials missing, rejected, or lacking access."""

    remediation = MISCONFIGURED


class MalformedUpstreamResponse(UpstreamError):
    """Response could not be parsed or lacks required fields."""

    remediation = DIFFERENT_INPUT


class InsufficientCandidates(RecommendationError):
    """No candidate tracks were produced for the analysis."""

    remediation = DIFFERENT_INPUT


class InsufficientScoredTracks(RecommendationError):
    """Candidates exist but none of them could be scored."""

    remediation = DIFFERENT_INPUT


class CacheUnavailable(Exception):
    """Raised by cache stores; always absorbed by the caching layer."""
