"""Errors raised by the service modules and rendered by main.py."""

from typing import Optional


class ServiceError(Exception):
    status_code = 400
    error_code: Optional[str] = None

    def __init__(self, message: str, error_code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not-found"


class ValidationError(ServiceError):
    status_code = 400
    error_code = "invalid-request"


class EmailAlreadyExistsError(ServiceError):
    status_code = 400
    error_code = "email-already-exists"

    def __init__(self, message: str = "Email is already registered. Please login instead."):
        super().__init__(message)


class InvalidOtpError(ServiceError):
    status_code = 400
    error_code = "invalid-otp"

    def __init__(self, message: str = "Invalid or expired verification code. Please request a new code."):
        super().__init__(message)


class AuthError(ServiceError):
    status_code = 401


class EmailDeliveryError(ServiceError):
    status_code = 500
    error_code = "email-delivery-failed"
