"""
Ganttium - Custom Exceptions
============================
Centralized exception hierarchy for structured error handling.

Every exception carries the HTTP status the API handlers translate it to.
"""

from typing import Optional, Dict, Any, List


class GanttiumBaseException(Exception):
    """Base exception for all Ganttium errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
        }
        if self.original_error:
            result["original_error"] = str(self.original_error)
        return result


# =============================================================================
# Client Errors
# =============================================================================

class ValidationError(GanttiumBaseException):
    """Input validation failure."""

    status_code = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        errors: Optional[List[str]] = None,
    ):
        context: Dict[str, Any] = {}
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)[:100]
        if errors:
            context["errors"] = errors
        super().__init__(message, context)


class AuthenticationError(GanttiumBaseException):
    """Missing, invalid or expired credentials."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class PermissionDeniedError(GanttiumBaseException):
    """Authenticated user lacks the role for the action."""

    status_code = 403

    def __init__(self, message: str = "Access denied", required_role: Optional[str] = None):
        context = {"required_role": required_role} if required_role else {}
        super().__init__(message, context)


class NotFoundError(GanttiumBaseException):
    """Requested entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[Any] = None):
        message = f"{entity} {entity_id} not found" if entity_id is not None else f"{entity} not found"
        context = {"entity": entity}
        if entity_id is not None:
            context["entity_id"] = str(entity_id)
        super().__init__(message, context)


class ConflictError(GanttiumBaseException):
    """Uniqueness or state conflict."""

    status_code = 409


class UploadRejectedError(GanttiumBaseException):
    """Uploaded file failed validation."""

    status_code = 415

    def __init__(self, message: str, filename: Optional[str] = None, too_large: bool = False):
        context = {"filename": filename} if filename else {}
        super().__init__(message, context)
        if too_large:
            self.status_code = 413


class RateLimitExceededError(GanttiumBaseException):
    """Too many attempts from one client."""

    status_code = 429

    def __init__(self, message: str = "Too many attempts, please try again later", retry_after: float = 0.0):
        super().__init__(message, {"retry_after": round(retry_after, 1)})
        self.retry_after = retry_after


class SchedulingError(GanttiumBaseException):
    """Task network cannot be scheduled (dependency cycle)."""

    status_code = 422

    def __init__(self, message: str, task_ids: Optional[List[int]] = None):
        context = {"task_ids": task_ids} if task_ids else {}
        super().__init__(message, context)


# =============================================================================
# Infrastructure Errors
# =============================================================================

class DatabaseConnectionError(GanttiumBaseException):
    """Base class for data store connection failures."""

    status_code = 503


class RedisConnectionError(DatabaseConnectionError):
    """Redis connection failure."""

    def __init__(
        self,
        message: str = "Failed to connect to Redis",
        uri: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        context = {"uri": uri} if uri else {}
        super().__init__(message, context, original_error)


class ExternalServiceError(GanttiumBaseException):
    """Upstream provider (ECB, Twilio) failed."""

    status_code = 502

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        context = {"service": service} if service else {}
        super().__init__(message, context, original_error)
