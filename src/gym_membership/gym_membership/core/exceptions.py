class DomainError(Exception):
    """Base exception for business rule violations."""

    code = "domain_error"


class NotFoundError(DomainError):
    """Raised when a member, session, group or gym does not exist."""

    code = "not_found"


class NoSubscriptionError(NotFoundError):
    code = "no_subscription"


class InvalidStateError(DomainError):
    """Raised when an operation is not valid for the entity's current state or time."""

    code = "invalid_state"


class FutureSessionError(InvalidStateError):
    code = "future_session"


class NoPendingAbsenceError(InvalidStateError):
    code = "no_pending_absence"


class InvalidSessionError(InvalidStateError):
    code = "invalid_session"


class DeadlineExceededError(InvalidStateError):
    code = "deadline_exceeded"


class SubscriptionInactiveError(DomainError):
    code = "subscription_inactive"


class PermissionDeniedError(DomainError):
    """Raised when the member's subscription does not grant a capability."""

    code = "permission_denied"


class AuthorizationError(DomainError):
    """Raised when a caller lacks the capability for an action."""

    code = "forbidden"


class QuotaExceededError(DomainError):
    code = "quota_exceeded"


class SessionFullError(DomainError):
    code = "session_full"


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""

    code = "invalid_argument"


class InvalidArgumentError(ValidationError):
    code = "invalid_argument"


class InvalidTypeError(ValidationError):
    code = "invalid_type"


class ConflictError(DomainError):
    """Raised when a transaction kept conflicting after all retries."""

    code = "conflict"


class PartialResolutionError(ConflictError):
    """Raised when attendance was stored but some recoveries could not be resolved."""

    code = "partial_resolution"

    def __init__(self, message: str, *, unresolved_member_ids: list[int]):
        super().__init__(message)
        self.unresolved_member_ids = list(unresolved_member_ids)
