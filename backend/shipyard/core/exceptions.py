"""
Custom exception hierarchy for domain errors.

Services raise domain exceptions and the handlers in exception_handlers.py
map them to HTTP responses. The concrete class name is reported to clients
as the machine-readable error kind.
"""
from typing import Optional, Dict, Any


class DomainException(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


# =============================================================================
# Not Found Errors (404)
# =============================================================================

class NotFoundError(DomainException):
    """Base class for resource not found errors."""
    pass


class AppNotFoundError(NotFoundError):
    """Application does not exist."""

    def __init__(self, app_id: str):
        super().__init__(f"Application not found: {app_id}", {"app_id": app_id})


# =============================================================================
# Conflict Errors (409)
# =============================================================================

class AlreadyExistsError(DomainException):
    """Base class for resource conflict errors."""
    pass


class DuplicateAppIdError(AlreadyExistsError):
    """An application with this id is already registered."""

    def __init__(self, app_id: str):
        super().__init__(f"Application id already exists: {app_id}", {"app_id": app_id})


class PortInUseError(AlreadyExistsError):
    """Port is held by another live application or reservation."""

    def __init__(self, port: int, owner: Optional[str] = None):
        details: Dict[str, Any] = {"port": port}
        if owner:
            details["owner"] = owner
        super().__init__(f"Port already in use: {port}", details)


class DeploymentInProgressError(AlreadyExistsError):
    """A deployment pipeline is already active for this application."""

    def __init__(self, app_id: str, current_status: str):
        super().__init__(
            f"Deployment already in progress for {app_id} (status: {current_status})",
            {"app_id": app_id, "current_status": current_status}
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================

class ValidationError(DomainException):
    """Base class for validation errors."""
    pass


class InvalidRequestError(ValidationError):
    """Creation input is malformed."""

    def __init__(self, field: str, reason: str):
        super().__init__(f"Invalid {field}: {reason}", {"field": field, "reason": reason})


class InvalidTransitionError(ValidationError):
    """Requested status change is not allowed by the lifecycle."""

    def __init__(self, app_id: str, current_status: str, target_status: str):
        super().__init__(
            f"Cannot move application {app_id} from {current_status} to {target_status}",
            {"app_id": app_id, "current_status": current_status, "target_status": target_status}
        )


# =============================================================================
# Operation Errors (500)
# =============================================================================

class OperationError(DomainException):
    """Base class for operation failures."""
    pass


class BuildFailedError(OperationError):
    """Image build failed or timed out."""

    def __init__(self, image_name: str, reason: str):
        super().__init__(f"Build failed ({image_name}): {reason}", {"image_name": image_name, "reason": reason})


class RunFailedError(OperationError):
    """Container start failed or timed out."""

    def __init__(self, container_name: str, reason: str):
        super().__init__(
            f"Container run failed ({container_name}): {reason}",
            {"container_name": container_name, "reason": reason}
        )


# =============================================================================
# Service Unavailable (503)
# =============================================================================

class ServiceUnavailableError(DomainException):
    """External service or resource is unavailable."""

    def __init__(self, service: str, reason: str = "Service unavailable"):
        super().__init__(f"{service}: {reason}", {"service": service, "reason": reason})


class NoFreePortError(ServiceUnavailableError):
    """No available ports in range."""

    def __init__(self, port_range_start: int, port_range_end: int, attempts: int):
        DomainException.__init__(
            self,
            f"No available ports in range {port_range_start}-{port_range_end} after {attempts} attempts",
            {"port_range_start": port_range_start, "port_range_end": port_range_end, "attempts": attempts}
        )


class PersistenceError(ServiceUnavailableError):
    """Durable store operation failed."""

    def __init__(self, operation: str, reason: str):
        DomainException.__init__(
            self,
            f"Database error during {operation}: {reason}",
            {"operation": operation, "reason": reason}
        )
