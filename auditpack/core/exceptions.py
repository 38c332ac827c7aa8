"""
Platform-wide exception hierarchy.

Services raise these types; the app factory registers one error handler per
type and maps it to a JSON error body and HTTP status, so blueprints never
translate exceptions themselves.

Usage:
    from auditpack.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Request", resource_id=rid)
    raise ValidationError("Invalid request", details={"title": "Title is required"})
"""


class NotFoundError(Exception):
    """Raised when a referenced resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Request", "Notification").
        resource_id: The key that was looked up. Logged, not shown to users.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)

    @property
    def public_message(self) -> str:
        return f"{self.resource} not found"


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Args:
        message: Human-readable explanation of what failed.
        details: Field-level breakdown; keys are field names, values are
                 error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class Unauthorized(Exception):
    """Raised when the actor may not view or act on an existing resource.

    Rendered as "Restricted Access" (403), never as a 404.
    """

    def __init__(self, profile_id: str | None, action: str, resource_id: str | None = None) -> None:
        self.profile_id = profile_id
        self.action = action
        self.resource_id = resource_id
        super().__init__(f"Profile {profile_id} may not {action} {resource_id or ''}".rstrip())


class AuthenticationError(Exception):
    """Raised when credentials or the bearer token are missing or invalid (401)."""


class InvalidTransition(Exception):
    """Raised when a status change is not in the allowed transition table."""

    def __init__(self, request_id: str, current: str, target: str, reason: str | None = None) -> None:
        self.request_id = request_id
        self.current_status = current
        self.target_status = target
        self.reason = reason
        msg = f"Cannot move request {request_id} from '{current}' to '{target}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class ConflictError(Exception):
    """Raised on duplicate unique values or a stale conditional update (409).

    Args:
        resource: Model name.
        field: The field whose value conflicts.
        value: The conflicting value.
        stale: True when the conflict is a lost race on a conditional update.
    """

    def __init__(self, resource: str, field: str, value: str | None = None, *, stale: bool = False) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        self.stale = stale
        if stale:
            msg = f"{resource} {field} changed to {value!r} by another user; reload and retry"
        else:
            msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class ExternalServiceError(Exception):
    """Raised when a collaborator (storage, mailer, LLM) fails and no fallback applies.

    Args:
        service: Name of the failing collaborator, e.g. "storage".
        message: User-facing explanation (safe to show).
    """

    def __init__(self, service: str, message: str) -> None:
        self.service = service
        super().__init__(message)
