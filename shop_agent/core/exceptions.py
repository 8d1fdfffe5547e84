"""Exception taxonomy for the shop agent.

Every failure the core can surface maps to one of these classes. Each carries a
stable ``error_code`` and a ``retryable`` flag so callers can decide between
retrying and surfacing the failure without inspecting messages.
"""

from typing import Optional, Dict, Any
from enum import Enum
from datetime import datetime


class ErrorSeverity(str, Enum):
    """Error severity levels for monitoring and alerting."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(str, Enum):
    """Error categories for classification and handling."""
    VALIDATION = "validation"
    BUSINESS_LOGIC = "business_logic"
    EXTERNAL_SERVICE = "external_service"
    DATABASE = "database"
    RATE_LIMIT = "rate_limit"
    CONFIGURATION = "configuration"
    SYSTEM = "system"


class ShopAgentException(Exception):
    """Base exception class for all shop agent errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        error_code: str,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None,
        retry_after: Optional[int] = None
    ):
        self.message = message
        self.error_code = error_code
        self.category = category
        self.severity = severity
        self.details = details or {}
        self.user_message = user_message or message
        self.retry_after = retry_after
        self.timestamp = datetime.utcnow()

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "details": self.details,
            "retry_after": self.retry_after,
            "timestamp": self.timestamp.isoformat()
        }


class ValidationError(ShopAgentException):
    """Raised when input does not have the expected shape."""

    def __init__(self, message: str, errors: Optional[list] = None, field: Optional[str] = None, **kwargs):
        details = kwargs.pop('details', {})
        if errors:
            details['errors'] = list(errors)
        if field:
            details['field'] = field

        super().__init__(
            message=message,
            error_code="VALIDATION_ERROR",
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.LOW,
            details=details,
            user_message=kwargs.pop('user_message', message),
            **kwargs
        )

    @property
    def errors(self) -> list:
        return self.details.get('errors', [self.message])


class NotFoundError(ShopAgentException):
    """Raised when a referenced record or entity does not exist."""

    def __init__(self, resource_type: str, resource_id: Any, **kwargs):
        super().__init__(
            message=f"{resource_type} with id '{resource_id}' not found",
            error_code="NOT_FOUND",
            category=ErrorCategory.BUSINESS_LOGIC,
            severity=ErrorSeverity.LOW,
            details={"resource_type": resource_type, "resource_id": str(resource_id)},
            user_message=f"The requested {resource_type.lower()} was not found.",
            **kwargs
        )


class TransportError(ShopAgentException):
    """Raised when a network call to an LLM or domain service fails."""

    retryable = True

    def __init__(self, service: str, message: str, error_code: str = "TRANSPORT_ERROR", **kwargs):
        details = kwargs.pop('details', {})
        details['service'] = service

        super().__init__(
            message=message,
            error_code=error_code,
            category=ErrorCategory.EXTERNAL_SERVICE,
            severity=ErrorSeverity.MEDIUM,
            details=details,
            user_message=kwargs.pop('user_message', "A temporary service issue occurred. Please try again later."),
            **kwargs
        )


class OperationTimeoutError(TransportError):
    """Raised when a guarded operation runs past its time budget."""

    def __init__(self, operation: str, timeout_seconds: float, **kwargs):
        super().__init__(
            service=operation,
            message=f"Operation '{operation}' exceeded {timeout_seconds:g}s",
            error_code="OPERATION_TIMEOUT",
            details={"timeout_seconds": timeout_seconds},
            user_message="The operation took too long and was stopped.",
            **kwargs
        )


class ProviderError(ShopAgentException):
    """Raised when an LLM API answers with a structured error."""

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None, **kwargs):
        super().__init__(
            message=f"LLM provider error ({provider}): {message}",
            error_code="PROVIDER_ERROR",
            category=ErrorCategory.EXTERNAL_SERVICE,
            severity=ErrorSeverity.HIGH,
            details={"provider": provider, "status_code": status_code},
            user_message=message,
            **kwargs
        )


class ParseError(ShopAgentException):
    """Raised when model output cannot be turned into a structured analysis."""

    def __init__(self, message: str, raw_content: Optional[str] = None, **kwargs):
        details = {}
        if raw_content is not None:
            details['raw_content'] = raw_content[:2000]

        super().__init__(
            message=message,
            error_code="PARSE_ERROR",
            category=ErrorCategory.EXTERNAL_SERVICE,
            severity=ErrorSeverity.LOW,
            details=details,
            user_message="The model reply could not be understood.",
            **kwargs
        )


class CircuitOpenError(ShopAgentException):
    """Raised without calling the operation while its circuit is open."""

    retryable = True

    def __init__(self, operation: str, retry_after: Optional[int] = None, **kwargs):
        super().__init__(
            message=f"Circuit breaker is open for operation: {operation}",
            error_code="CIRCUIT_BREAKER_OPEN",
            category=ErrorCategory.EXTERNAL_SERVICE,
            severity=ErrorSeverity.HIGH,
            details={"operation": operation},
            user_message="The service is temporarily paused after repeated failures. Please try again later.",
            retry_after=retry_after,
            **kwargs
        )


class RateLimitError(ShopAgentException):
    """Raised when a quota is exhausted."""

    retryable = True

    def __init__(self, limit: int, window: str, remaining: int = 0, reset_time: Optional[int] = None, **kwargs):
        super().__init__(
            message=f"Rate limit exceeded: {limit} requests per {window}",
            error_code="RATE_LIMIT_EXCEEDED",
            category=ErrorCategory.RATE_LIMIT,
            severity=ErrorSeverity.LOW,
            details={
                "limit": limit,
                "window": window,
                "remaining": remaining,
                "reset_time": reset_time
            },
            user_message=kwargs.pop('user_message', f"Too many requests. Please wait for the {window} window to reset."),
            retry_after=reset_time,
            **kwargs
        )


class PersistenceError(ShopAgentException):
    """Raised when a durable store read or write fails."""

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        details = kwargs.pop('details', {})
        if operation:
            details['operation'] = operation

        super().__init__(
            message=message,
            error_code="PERSISTENCE_ERROR",
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.HIGH,
            details=details,
            user_message="A storage error occurred. Please try again later.",
            **kwargs
        )


class JobConflictError(ShopAgentException):
    """Raised when job state changes collide with the stored state."""

    def __init__(self, message: str, status: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code="JOB_CONFLICT",
            category=ErrorCategory.BUSINESS_LOGIC,
            severity=ErrorSeverity.LOW,
            details={"status": status},
            user_message=message,
            **kwargs
        )


class ConfigurationError(ShopAgentException):
    """Raised when configuration is invalid or missing."""

    def __init__(self, config_key: str, message: str, **kwargs):
        super().__init__(
            message=f"Configuration error for '{config_key}': {message}",
            error_code="CONFIGURATION_ERROR",
            category=ErrorCategory.CONFIGURATION,
            severity=ErrorSeverity.CRITICAL,
            details={"config_key": config_key},
            user_message=message,
            **kwargs
        )
