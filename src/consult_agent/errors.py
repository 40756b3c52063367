"""Exception hierarchy with stable error codes.

Request-scoped failures (admission rejection, model invocation, batch
validation) are raised as these types and mapped to caller-visible error kinds
at the boundary. Component-local failures (one context source, one batch item)
never escape as exceptions; they are reported as data where they occur.
"""

from __future__ import annotations

from typing import Any


class ConsultantError(Exception):
    """Base exception for the consultation service.

    Attributes:
        code: Stable error code string (e.g. "ADMISSION_REJECTED").
        message: Human-readable, sanitized description.
        details: Additional context as keyword arguments.
    """

    code: str = "INTERNAL_ERROR"
    message: str = "An internal error occurred"
    retryable: bool = False

    def __init__(self, message: str | None = None, code: str | None = None, **kwargs: Any) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.details = kwargs
        super().__init__(self.message)


class ConfigurationError(ConsultantError):
    """Invalid or missing configuration."""

    code: str = "CONFIGURATION_ERROR"


class AdmissionRejectedError(ConsultantError):
    """Client exceeded its request or token budget."""

    code: str = "ADMISSION_REJECTED"
    message: str = "Rate limit exceeded. Please retry after the current window resets."


class ContextSourceError(ConsultantError):
    """A single context source failed. Always absorbed by the gatherer."""

    code: str = "CONTEXT_SOURCE_ERROR"


class ModelInvocationError(ConsultantError):
    """The model-invocation service failed.

    `retryable` is true for throttling, transient 5xx responses, connection
    resets and timeouts.
    """

    code: str = "MODEL_INVOCATION_ERROR"
    message: str = "Model invocation failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        code: str | None = None,
        retryable: bool = False,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.status = status
        self.provider_code = code
        self.retryable = retryable


class BatchValidationError(ConsultantError):
    """Malformed batch shape, rejected before any item runs."""

    code: str = "VALIDATION_ERROR"


RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})


def is_retryable_status(status: int | None) -> bool:
    return status is not None and status in RETRYABLE_STATUSES


def describe_error(exc: BaseException) -> str:
    """Single-line message for an exception, without traceback."""
    if isinstance(exc, ConsultantError):
        return exc.message
    text = str(exc).strip()
    if not text:
        return exc.__class__.__name__
    return " ".join(text.split())


def error_payload(exc: BaseException) -> dict[str, Any]:
    """Render an exception as a sanitized caller-facing payload."""
    if isinstance(exc, ConsultantError):
        return {"code": exc.code, "message": exc.message, "retryable": exc.retryable}
    return {"code": ConsultantError.code, "message": ConsultantError.message, "retryable": False}
