"""Domain exception hierarchy for structured error responses."""

from __future__ import annotations


class AppException(Exception):
    """Base exception for all domain errors.

    Subclasses set ``code`` and ``status_code`` at the class level; callers
    provide ``message`` and an optional ``details`` list.
    """

    code: str = "APP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, details: list[dict] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundException(AppException):
    code = "NOT_FOUND"
    status_code = 404


class ConflictException(AppException):
    code = "CONFLICT"
    status_code = 409


class ForbiddenException(AppException):
    code = "FORBIDDEN"
    status_code = 403


class UnauthorizedException(AppException):
    code = "UNAUTHORIZED"
    status_code = 401


class ValidationException(AppException):
    code = "VALIDATION_ERROR"
    status_code = 422


class BusinessRuleException(AppException):
    code = "BUSINESS_RULE_VIOLATION"
    status_code = 422


class ProductNotShippableException(AppException):
    """A cart product has no owning vendor and cannot be fulfilled."""

    code = "PRODUCT_NOT_SHIPPABLE"
    status_code = 422


class OrderIdUnavailableException(AppException):
    """The daily order counter could not be incremented."""

    code = "ORDER_ID_UNAVAILABLE"
    status_code = 503


class ExternalServiceException(AppException):
    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 502
