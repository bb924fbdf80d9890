from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from app.services.errors import GatewayError, NotConnectedError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    """Outcome of a gateway operation.

    ``error_code`` carries a ``GatewayError.code`` (``not_connected``,
    ``send_failed``, ...) that routers map to HTTP status codes.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = GatewayError.code) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    @staticmethod
    def from_error(error: GatewayError, code: Optional[str] = None) -> "Result[T]":
        """Failure carrying the error's message and code, unless ``code`` overrides it."""
        return Result(ok=False, error=error.message, error_code=code or error.code)

    @property
    def not_connected(self) -> bool:
        return not self.ok and self.error_code == NotConnectedError.code

    def unwrap_or(self, default: T) -> T:
        return self.value if self.ok else default
