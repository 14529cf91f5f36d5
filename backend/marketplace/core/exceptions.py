"""Error classifications for the payment event pipeline"""
from typing import Optional


class PipelineError(Exception):
    """Base class for payment pipeline failures"""

    error_kind = "pipeline_error"


class SignatureInvalid(PipelineError):
    """Payment event failed authentication (bad/missing signature or unparseable body)"""

    error_kind = "signature_invalid"


class MissingMetadata(PipelineError):
    """Required checkout fields are absent or malformed"""

    error_kind = "missing_metadata"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PartialWriteFailure(PipelineError):
    """Order header was written but its line items were not"""

    error_kind = "partial_write_failure"


class InvalidLifecycleTransition(PipelineError):
    """Requested order state change is not allowed from the current state"""

    error_kind = "invalid_lifecycle_transition"

    def __init__(self, from_state: str, to_state: str, allowed=None):
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = list(allowed or [])
        allowed_display = ", ".join(self.allowed) or "none"
        super().__init__(
            f"Invalid state transition: {from_state} -> {to_state}. "
            f"Allowed transitions from {from_state}: {allowed_display}"
        )


class FailureRecorderUnavailable(PipelineError):
    """A failed event could not be persisted to the recovery log"""

    error_kind = "failure_recorder_unavailable"
