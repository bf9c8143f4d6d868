# Overview: Application error taxonomy shared by services and routes.

from __future__ import annotations


class AppError(Exception):
    """Base class for errors that map to an HTTP status."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(AppError):
    """400-level input problem."""
    status_code = 400


class AuthenticationError(AppError):
    status_code = 401


class AuthorizationError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """409-level business rule conflict (stock, slot, coupon use, state)."""
    status_code = 409


class ExternalServiceError(AppError):
    """Payment gateway unreachable or returned a failure."""
    status_code = 502
