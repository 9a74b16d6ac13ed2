"""
Error taxonomy for the CloneFlow engine.

Every failure that crosses the Operation/Workflow boundary is an EngineError
carrying one of the five ErrorCode values, so front ends can render a
structured ``{"code": ..., "message": ...}`` payload.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Closed set of engine error codes."""
    INVALID_INPUT = "InvalidInput"
    NOT_FOUND = "NotFound"
    UNSUPPORTED = "Unsupported"
    IO = "Io"
    INTERNAL = "Internal"


class EngineError(Exception):
    """Structured engine failure."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'EngineError':
        return cls(ErrorCode(d["code"]), d.get("message", ""))

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class OperationCancelled(EngineError):
    """Raised when a progress callback requests cancellation."""

    def __init__(self, message: str = "Operation cancelled by caller"):
        super().__init__(ErrorCode.INVALID_INPUT, message)


class WorkflowError(EngineError):
    """Workflow-level failure raised after a transactional rollback.

    Attributes:
        failed_index: 0-based index of the operation that failed
        cause: The EngineError raised by that operation
    """

    def __init__(self, message: str, failed_index: int, cause: Optional[EngineError] = None):
        code = cause.code if cause is not None else ErrorCode.INTERNAL
        super().__init__(code, message)
        self.failed_index = failed_index
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["failed_index"] = self.failed_index
        if self.cause is not None:
            d["cause"] = self.cause.to_dict()
        return d


def invalid_input(message: str) -> EngineError:
    return EngineError(ErrorCode.INVALID_INPUT, message)


def not_found(message: str) -> EngineError:
    return EngineError(ErrorCode.NOT_FOUND, message)


def unsupported(message: str) -> EngineError:
    return EngineError(ErrorCode.UNSUPPORTED, message)


def internal(message: str) -> EngineError:
    return EngineError(ErrorCode.INTERNAL, message)


def io_error(message: str) -> EngineError:
    return EngineError(ErrorCode.IO, message)
