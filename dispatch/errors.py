"""
Error taxonomy shared by the core operations. The HTTP layer maps each class to a status code.
"""


class DispatchError(Exception):
    """Base class for errors raised by core operations."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(DispatchError):
    """Referenced order, rider or location is absent (or not owned by the actor)."""

    status_code = 404


class Conflict(DispatchError):
    """Rider already busy, order no longer assignable, or a concurrent write won the race."""

    status_code = 409


class Forbidden(DispatchError):
    """Actor lacks permission for the operation."""

    status_code = 403


class ValidationFailed(DispatchError):
    status_code = 400


class InvalidTransition(ValidationFailed):
    """Raised when the requested status is not reachable from the current one."""

    def __init__(self, current_state: str | None, target_state: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Cannot move order from {current_state} to {target_state}")
