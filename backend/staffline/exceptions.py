"""Domain exceptions shared by services, agent tools and the API layer."""

from typing import Optional


class StafflineError(Exception):
    """Base class for domain errors."""

    code = "error"

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def to_dict(self) -> dict:
        data = {"type": self.code, "message": self.message}
        if self.hint:
            data["hint"] = self.hint
        return data


class NotFoundError(StafflineError):
    """Referenced entity does not exist in the tenant's scope."""

    code = "not_found"


class SlotConflictError(StafflineError):
    """The requested time is no longer free."""

    code = "slot_conflict"


class BookingValidationError(StafflineError):
    """Malformed tool arguments or client input."""

    code = "validation_error"


class ForbiddenError(StafflineError):
    """Entity exists but belongs to another client."""

    code = "forbidden"


class ExternalServiceError(StafflineError):
    """Language model or messaging channel unavailable."""

    code = "external_service_error"

    def __init__(self, message: str, transient: bool = True):
        super().__init__(message)
        self.transient = transient


class AuthorizationError(StafflineError):
    """Shared secret mismatch or missing."""

    code = "unauthorized"
