"""
shared/errors.py
Domain error taxonomy shared by the service and the admin client.

Services raise these; the API renders them through a single exception
handler as {"detail": message, "code": code}. Messages are written for the
administrator and never carry provider error codes.
"""

from typing import Optional


class DomainError(Exception):
    status_code: int = 400
    code: str = "error"
    message: str = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None, code: Optional[str] = None):
        self.message = message or self.message
        self.code = code or self.code
        super().__init__(self.message)


# ── Validation (caught before any network call) ───────────────

class ValidationError(DomainError):
    status_code = 422
    code = "validation_error"
    message = "The request is invalid"


class WeakPassword(ValidationError):
    code = "weak_password"
    message = "Password does not meet the password policy"


class PasswordMismatch(ValidationError):
    code = "password_mismatch"
    message = "Passwords do not match"


class UnsupportedCarType(ValidationError):
    code = "unsupported_car_type"
    message = "Car type must be 4-seater or 6-seater"


# ── Not found ─────────────────────────────────────────────────

class NotFoundError(DomainError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class RouteNotFound(NotFoundError):
    code = "route_not_found"
    message = "No fare is configured for this route"


class PricingUnavailable(NotFoundError):
    code = "pricing_unavailable"
    message = "Local pricing has not been configured"


class CityNotFound(NotFoundError):
    code = "city_not_found"
    message = "City not found"


class CustomerNotFound(NotFoundError):
    code = "customer_not_found"
    message = "Customer not found"


class BookingNotFound(NotFoundError):
    code = "booking_not_found"
    message = "Booking not found"


# ── Auth ──────────────────────────────────────────────────────

class AuthError(DomainError):
    status_code = 401
    code = "auth_error"
    message = "Authentication failed"


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid email or password"


class InvalidResetLink(AuthError):
    code = "invalid_reset_link"
    message = "Invalid or expired reset link. Please request a new one."


class NotAuthenticated(AuthError):
    code = "not_authenticated"
    message = "Your session has expired. Please sign in again."


class Forbidden(AuthError):
    status_code = 403
    code = "forbidden"
    message = "You are not allowed to perform this action"


# ── Conflict ──────────────────────────────────────────────────

class ConflictError(DomainError):
    status_code = 409
    code = "conflict"
    message = "The record was changed by someone else"


class InvalidTransition(ConflictError):
    code = "invalid_transition"
    message = "This booking cannot move to the requested status"


class DuplicateRecord(ConflictError):
    code = "duplicate_record"
    message = "A record with these details already exists"


# ── Transient ─────────────────────────────────────────────────

class TransientError(DomainError):
    status_code = 503
    code = "service_unavailable"
    message = "The service is temporarily unreachable. Please try again."
