"""Error taxonomy for the ingestion pipeline.

Every failure the pipeline reports to a caller is a ``TrackingError``. The
``retryable`` flag separates "bad input" from "try again later" so an
operator can decide what to do next.
"""

from typing import Any, Dict, Optional


class TrackingError(Exception):
    """Base class for all pipeline errors."""

    code = "tracking_error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
        retryable: Optional[bool] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.code,
            "detail": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            body["details"] = self.details
        return body


class UnsupportedPlatform(TrackingError):
    """URL does not belong to a supported platform (or operation)."""
    code = "unsupported_platform"


class UnresolvableIdentifier(TrackingError):
    """No canonical identity could be derived from the input."""
    code = "unresolvable_identifier"


class UpstreamUnavailable(TrackingError):
    """Provider unreachable or returning 5xx/429 after all retries."""

    code = "upstream_unavailable"
    retryable = True

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(message, details=details)
        self.status_code = status_code
        self.body = body


class ProviderRejected(TrackingError):
    """Provider answered with a non-retryable 4xx."""

    code = "provider_rejected"

    def __init__(self, message: str, *, status_code: int, body: Optional[str] = None):
        super().__init__(message, details={"status_code": status_code})
        self.status_code = status_code
        self.body = body


class JobAlreadyInFlight(TrackingError):
    """A run is already in progress for this item."""
    code = "job_already_in_flight"
    retryable = True


class SubmissionFailed(TrackingError):
    """The orchestrator did not accept the job submission."""
    code = "submission_failed"
    retryable = True


class WebhookUnmatched(TrackingError):
    """Callback references an unknown correlation handle."""
    code = "webhook_unmatched"


class InvalidTransition(TrackingError):
    """Lifecycle precondition failed."""
    code = "invalid_transition"


class ItemNotFound(TrackingError):
    code = "item_not_found"
