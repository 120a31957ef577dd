"""
Admin Error Taxonomy.

Every error raised by the composition core and the job orchestrator derives
from AdminError. Each class carries a stable machine code (returned in the
HTTP error envelope) and the HTTP status the edge maps it to.
"""

from typing import Any, Optional


class AdminError(Exception):
    """Base exception for all admin errors."""

    code: str = "INTERNAL"
    status_code: int = 500

    def __init__(
        self,
        message: str = "",
        *,
        code: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.__class__.__name__
        if code:
            self.code = code
        self.metadata = dict(metadata or {})
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Return the error envelope body."""
        return {"error": {"code": self.code, "message": self.message}}

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


# =============================================================================
# Validation (400)
# =============================================================================


class ValidationError(AdminError):
    """Descriptor or input violates its declared contract."""

    code = "VALIDATION"
    status_code = 400


class PanelValidationError(ValidationError):
    """Panel descriptors contradict each other."""

    code = "PANEL_VALIDATION"


class WidgetContractViolation(ValidationError):
    """A widget payload does not satisfy the canonical widget contract."""

    code = "WIDGET_CONTRACT_VIOLATION"


class CompletionPreconditionError(ValidationError):
    """Completion workflow invoked on an agreement that is not completed."""

    code = "COMPLETION_PRECONDITION"


# =============================================================================
# Authentication / Authorization (401 / 403)
# =============================================================================


class UnauthorizedError(AdminError):
    """Request carries no usable identity."""

    code = "UNAUTHORIZED"
    status_code = 401


class ForbiddenError(AdminError):
    """Authorizer denied the action."""

    code = "FORBIDDEN"
    status_code = 403


# =============================================================================
# Not Found (404)
# =============================================================================


class NotFoundError(AdminError):
    """Addressed entity is missing."""

    code = "NOT_FOUND"
    status_code = 404


# =============================================================================
# Immutability / Conflict (409)
# =============================================================================


class ImmutableError(AdminError):
    """Operation attempted on a terminal entity."""

    code = "IMMUTABLE"
    status_code = 409


class AgreementImmutableError(ImmutableError):
    code = "AGREEMENT_IMMUTABLE"


class AuditEventsAppendOnlyError(ImmutableError):
    code = "AUDIT_EVENTS_APPEND_ONLY"


class ArtifactImmutableError(ImmutableError):
    code = "ARTIFACT_IMMUTABLE"


class ConflictError(AdminError):
    """Duplicate registration or key."""

    code = "CONFLICT"
    status_code = 409


class PanelDuplicateError(ConflictError):
    code = "PANEL_DUPLICATE"


class AdminInitializedError(ConflictError):
    code = "ADMIN_ALREADY_INITIALIZED"


class RegistrationClosedError(ConflictError):
    """Registration attempted after the admin was initialized."""

    code = "ADMIN_REGISTRATION_CLOSED"


# =============================================================================
# Dependency Missing (500)
# =============================================================================


class DependencyMissingError(AdminError):
    """A collaborator required by the operation is not configured."""

    code = "DEPENDENCIES_NOT_CONFIGURED"
    status_code = 500


class PanelRepositoryMissingError(DependencyMissingError):
    code = "PANEL_REPOSITORY_MISSING"


# =============================================================================
# Transient / Terminal Job Failure (502)
# =============================================================================


class TransientError(AdminError):
    """Retryable failure of an external collaborator."""

    code = "TRANSIENT"
    status_code = 502


class JobFailedError(TransientError):
    """Job attempts exhausted."""

    code = "JOB_FAILED"


# =============================================================================
# Cancellation / Queue
# =============================================================================


class CancelledOperationError(AdminError):
    """Caller cancelled the operation."""

    code = "CANCELLED"
    status_code = 499


class QueueClosedError(AdminError):
    code = "QUEUE_CLOSED"
    status_code = 503


__all__ = [
    "AdminError",
    "ValidationError",
    "PanelValidationError",
    "WidgetContractViolation",
    "CompletionPreconditionError",
    "UnauthorizedError",
    "ForbiddenError",
    "NotFoundError",
    "ImmutableError",
    "AgreementImmutableError",
    "AuditEventsAppendOnlyError",
    "ArtifactImmutableError",
    "ConflictError",
    "PanelDuplicateError",
    "AdminInitializedError",
    "RegistrationClosedError",
    "DependencyMissingError",
    "PanelRepositoryMissingError",
    "TransientError",
    "JobFailedError",
    "CancelledOperationError",
    "QueueClosedError",
]
