class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

class SchedulerError(AppError):
    """Raised when the scheduler encounters a logical error or invalid state."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class ReferenceDataError(AppError):
    """Raised when the reference catalogs cannot support a batch at all (no venues, no slots)."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=422, details=details)

class ScopeLockedError(AppError):
    """Raised when another batch already holds an overlapping scheduling scope."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=409, details=details)

class InvalidTransitionError(AppError):
    """Raised when a triage action is not allowed from the failure's current status."""
    def __init__(self, current: str, action: str):
        super().__init__(
            f"Cannot {action} a failure in status '{current}'",
            status_code=409,
            details={"current_status": current, "action": action},
        )
