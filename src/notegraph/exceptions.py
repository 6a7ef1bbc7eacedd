"""Custom exceptions for the notegraph knowledge base.

Provides a structured exception hierarchy with error codes and
machine-readable error information for callers such as the CLI.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_ALREADY_EXISTS = 1003
    NOTE_TITLE_REQUIRED = 1004

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001

    # Search errors (5xxx)
    SEARCH_FAILED = 5001
    SEARCH_INVALID_QUERY = 5002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    PROMPT_REQUIRED = 7002

    # Generation backend errors (8xxx)
    UPSTREAM_UNAVAILABLE = 8001
    UPSTREAM_TIMEOUT = 8002
    UPSTREAM_REJECTED = 8003


class NotegraphError(Exception):
    """Base exception for all notegraph errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ValidationError(NotegraphError):
    """Raised when caller input is rejected before any state is touched."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NoteNotFoundError(NotegraphError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class StorageError(NotegraphError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class SearchError(NotegraphError):
    """Raised for search-related errors."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        code: ErrorCode = ErrorCode.SEARCH_FAILED
    ):
        details = {}
        if query:
            details["query"] = query[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.query = query


class SearchSyntaxError(SearchError):
    """Raised when the full-text engine rejects a query string."""

    def __init__(self, query: str, reason: Optional[str] = None):
        message = "Malformed full-text query"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, query=query, code=ErrorCode.SEARCH_INVALID_QUERY)


class UpstreamUnavailable(NotegraphError):
    """Raised when the generation backend cannot be reached."""

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        code: ErrorCode = ErrorCode.UPSTREAM_UNAVAILABLE,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if url:
            details["url"] = url
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.url = url
        self.original_error = original_error


class UpstreamTimeout(UpstreamUnavailable):
    """Raised when the generation backend does not answer in time."""

    def __init__(
        self,
        timeout: float,
        url: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            f"Generation backend did not respond within {timeout}s",
            url=url,
            code=ErrorCode.UPSTREAM_TIMEOUT,
            original_error=original_error,
        )
        self.timeout = timeout
        self.details["timeout"] = timeout


class UpstreamError(NotegraphError):
    """Raised when the generation backend answers with a non-success status."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(
            f"Generation backend error {status_code}",
            code=ErrorCode.UPSTREAM_REJECTED,
            details={"status_code": status_code, "detail": detail[:500]}
        )
        self.status_code = status_code
        self.detail = detail
