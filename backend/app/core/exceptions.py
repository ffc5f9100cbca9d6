class AppError(Exception):
    """Base class for all application exceptions."""
    def __init__(self, message: str, status_code: int = 500, details: dict = None, conflicts: list = None):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.conflicts = conflicts or []
        super().__init__(self.message)

class SchedulerError(AppError):
    """Raised for missing or invalid input, or an operation not allowed in the current state."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message, status_code=400, details=details)

class ConflictError(AppError):
    """Raised when applying an operation would double-book a teacher or a slot."""
    def __init__(self, message: str, conflicts: list = None, details: dict = None):
        super().__init__(message, status_code=409, details=details, conflicts=conflicts)

class StaleWriteError(ConflictError):
    """Raised when a weekly layer changed underneath the writer. Safe to retry."""
    def __init__(self, message: str = "Weekly timetable was modified concurrently; reload and retry", details: dict = None):
        merged = {"retryable": True}
        merged.update(details or {})
        super().__init__(message, details=merged)

class ResourceNotFoundError(AppError):
    """Raised when a requested resource is not found."""
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(f"{resource_type} with id {resource_id} not found", status_code=404)

class AuthorizationError(AppError):
    """Raised when the caller's role does not permit the operation."""
    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message, status_code=403)

class ConfigurationError(AppError):
    """Raised when system configuration is invalid."""
    def __init__(self, message: str):
        super().__init__(message, status_code=500)
