"""Error taxonomy for the account lifecycle.

Every business-rule failure is raised as an :class:`AuthError` subclass at the
point of detection. The HTTP layer renders it as ``{"error": message, ...}``
with the subclass status code; anything else is an unexpected failure and is
reported as :class:`Internal`.
"""

from typing import Optional


class AuthError(Exception):
    status_code = 400
    default_message = "Request could not be processed"

    def __init__(self, message: Optional[str] = None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    def to_dict(self) -> dict:
        payload = {'error': self.message}
        payload.update({key: value for key, value in self.extra.items() if value is not None})
        return payload


class ValidationError(AuthError):
    status_code = 400
    default_message = "Invalid input"

    def __init__(self, details, message: Optional[str] = None):
        if isinstance(details, str):
            details = [details]
        self.details = list(details)
        super().__init__(message or "; ".join(self.details), details=self.details)


class NotFound(AuthError):
    status_code = 404
    default_message = "Account not found"


class Unverified(AuthError):
    status_code = 403
    default_message = "Account not verified"


class RateLimited(AuthError):
    status_code = 429
    default_message = "Too many requests. Please try again later."

    def __init__(self, message: Optional[str] = None, retry_after_seconds: Optional[int] = None,
                 retry_after_minutes: Optional[int] = None):
        self.retry_after_seconds = retry_after_seconds
        self.retry_after_minutes = retry_after_minutes
        super().__init__(
            message,
            retryAfterSeconds=retry_after_seconds,
            retryAfterMinutes=retry_after_minutes,
        )


class Locked(RateLimited):
    default_message = "Account temporarily locked due to too many failed attempts"

    def __init__(self, retry_after_minutes: int, message: Optional[str] = None):
        super().__init__(message, retry_after_minutes=retry_after_minutes)


class IncorrectCredential(AuthError):
    status_code = 400
    default_message = "Incorrect credentials"

    def __init__(self, message: Optional[str] = None, attempts_left: Optional[int] = None, **extra):
        self.attempts_left = attempts_left
        super().__init__(message, attemptsLeft=attempts_left, **extra)


class IncorrectPassword(IncorrectCredential):
    status_code = 401
    default_message = "Incorrect password"


class IncorrectCode(IncorrectCredential):
    default_message = "Incorrect OTP"


class Expired(AuthError):
    default_message = "OTP expired. Please request a new one."


class InvalidToken(AuthError):
    default_message = "Invalid or expired token"


class SamePassword(AuthError):
    default_message = "New password must be different from the current password"


class Conflict(AuthError):
    status_code = 409
    default_message = "Resource already exists"


class EmailInUse(Conflict):
    default_message = "Email is already in use by another account"


class Unauthorized(AuthError):
    status_code = 401
    default_message = "Access token required"


class Forbidden(AuthError):
    status_code = 403
    default_message = "Invalid or expired token"


class DeliveryError(AuthError):
    status_code = 500
    default_message = "Unable to send email. Please try again later."


class Internal(AuthError):
    status_code = 500
    default_message = "Internal server error"
