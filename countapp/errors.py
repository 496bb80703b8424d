"""Exceptions raised by the stock count workflows.

Every error carries the HTTP status the JSON error handler should answer
with, so services can raise them without knowing about Flask responses.
"""

from __future__ import annotations


class StockCountError(Exception):
    status_code = 500
    code = "error"
    default_message = "Stock count operation failed."

    def __init__(self, message: str | None = None, *, details: dict | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.details = details or {}

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "error": self.code,
            "message": self.message,
            "retryable": False,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class NotFound(StockCountError):
    status_code = 404
    code = "not_found"
    default_message = "Stock count not found."


class Conflict(StockCountError):
    status_code = 409
    code = "conflict"
    default_message = "The stock count is not in a state that allows this operation."


class ValidationError(StockCountError):
    status_code = 400
    code = "validation_error"
    default_message = "The submitted data is invalid."


class Unauthorized(StockCountError):
    status_code = 401
    code = "unauthorized"
    default_message = "Sign in to perform this operation."
