from __future__ import annotations

from typing import Any


class OptimizerError(Exception):
    """Base class for every failure surfaced to callers.

    Each subclass maps to a stable error code and an HTTP status so the
    routing layer never has to inspect messages.
    """

    code = "INTERNAL_SERVER_ERROR"
    status_code = 500

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self, include_details: bool = False) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code}
        if include_details and self.detail:
            error["details"] = self.detail
        return {
            "status": {"code": -self.status_code, "message": self.message},
            "error": error,
        }


class ValidationError(OptimizerError):
    """Malformed options or pipeline; raised before any transform work."""

    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        step: int | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.errors = errors if errors is not None else [message]
        self.step = step
        self.field = field

    def to_payload(self, include_details: bool = False) -> dict[str, Any]:
        payload = super().to_payload(include_details)
        payload["error"]["errors"] = list(self.errors)
        return payload


class UnsupportedFormatError(OptimizerError):
    code = "UNSUPPORTED_FORMAT"
    status_code = 415


class OversizeError(OptimizerError):
    code = "FILE_TOO_LARGE"
    status_code = 413


class InvalidDataError(OptimizerError):
    code = "INVALID_IMAGE"
    status_code = 400


class ProcessingError(OptimizerError):
    """The codec failed during decode, transform or encode.

    The original exception is kept as ``__cause__``.
    """

    code = "PROCESSING_ERROR"
    status_code = 422


class RetrievalError(OptimizerError):
    """The source image could not be obtained."""

    status_code = 400


class DownloadError(RetrievalError):
    code = "INVALID_URL"


class ReadError(RetrievalError):
    code = "READ_ERROR"


class AuthenticationError(OptimizerError):
    code = "INVALID_API_KEY"
    status_code = 401
