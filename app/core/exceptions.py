"""
Error taxonomy for the sales fulfillment core.

Services raise these; the API layer renders every NurseryError as
``{"error": message, "details": ...}`` with the class's HTTP status.
"""
from typing import Any, Optional


class NurseryError(Exception):
    """Base exception carrying a user-facing message and optional details."""

    status_code: int = 400

    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def as_dict(self) -> dict:
        """Serialize to the public error shape."""
        payload = {"error": self.message}
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationFailed(NurseryError):
    """Malformed input rejected before any lookup."""
    status_code = 422


class NotAuthenticated(NurseryError):
    """Caller has no authenticated user or organization."""
    status_code = 401

    def __init__(self, message: str = "Not authenticated", details: Optional[Any] = None):
        super().__init__(message, details)


class NotFoundError(NurseryError):
    """A referenced record does not exist in the caller's organization."""
    status_code = 404


class CrossTenantError(NurseryError):
    """A referenced record belongs to another organization."""
    status_code = 403


class CommitError(NurseryError):
    """The atomic order write failed and was rolled back."""
    status_code = 500


class InvalidTransition(NurseryError):
    """Order status change not permitted from the current status."""
    status_code = 409


class DispatchGuardError(NurseryError):
    """Delivery-run state machine guard violated."""
    status_code = 409


class AllocationError(NurseryError):
    """Allocation request would break a quantity constraint."""
    status_code = 409


class ConcurrencyConflict(AllocationError):
    """A batch changed underneath a Tier-2 allocation."""
