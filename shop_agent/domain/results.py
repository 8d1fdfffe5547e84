"""Uniform result wrapper returned by every public operation."""

from typing import TypeVar, Generic, Optional, List, Dict, Any

from shop_agent.core.exceptions import ShopAgentException

T = TypeVar('T')


class ServiceResult(Generic[T]):
    """Standard service result wrapper with success/error handling."""

    def __init__(
        self,
        success: bool,
        data: Optional[T] = None,
        message: str = "",
        errors: Optional[List[str]] = None,
        error: Optional[ShopAgentException] = None,
    ):
        self.success = success
        self.data = data
        self.message = message
        self.errors = errors or []
        self.error = error

    @classmethod
    def ok(cls, data: Optional[T] = None, message: str = "") -> 'ServiceResult[T]':
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error, errors: Optional[List[str]] = None, data: Optional[T] = None) -> 'ServiceResult[T]':
        """Build a failure from an exception or a plain message."""
        if isinstance(error, ShopAgentException):
            return cls(
                success=False,
                data=data,
                message=error.user_message,
                errors=errors or error.details.get('errors') or [error.user_message],
                error=error,
            )
        return cls(success=False, data=data, message=str(error), errors=errors or [str(error)])

    @property
    def error_code(self) -> Optional[str]:
        return self.error.error_code if self.error else None

    @property
    def is_retryable(self) -> bool:
        return bool(self.error is not None and self.error.retryable)

    def unwrap(self) -> T:
        """Get data or raise the wrapped exception."""
        if not self.success:
            if self.error is not None:
                raise self.error
            raise ValueError(self.message)
        return self.data

    def to_envelope(self) -> Dict[str, Any]:
        envelope: Dict[str, Any] = {"success": self.success, "message": self.message}
        if self.success:
            envelope["data"] = self.data
        else:
            envelope["errors"] = self.errors
            if self.error is not None:
                envelope["error_code"] = self.error.error_code
                envelope["retryable"] = self.error.retryable
            if self.data is not None:
                envelope["data"] = self.data
        return envelope

    def __repr__(self) -> str:
        return f"ServiceResult(success={self.success}, message={self.message!r})"
