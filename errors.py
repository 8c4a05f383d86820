"""
Domain errors for the credits API.

Every error carries the HTTP status it maps to; main.py registers a single
exception handler that turns them into JSON responses.
"""

from typing import Any, Dict, Optional


class CreditServiceError(Exception):
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}

    def headers(self) -> Optional[Dict[str, str]]:
        return None


class Unauthorized(CreditServiceError):
    status_code = 401
    default_message = "Unauthorized"


class InsufficientCredits(CreditServiceError):
    status_code = 402
    default_message = "Insufficient credits"

    def __init__(self, required: int, available: int, credits: int = 0, credits_extras: int = 0):
        self.required = required
        self.available = available
        self.credits = credits
        self.credits_extras = credits_extras
        super().__init__(f"Insufficient credits: {required} required, {available} available")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": "Insufficient credits",
            "required": self.required,
            "available": self.available,
            "credits": self.credits,
            "credits_extras": self.credits_extras,
        }


class AccountSuspended(CreditServiceError):
    status_code = 403
    default_message = "Your account has been suspended. Please contact support."


class AccountNotFound(CreditServiceError):
    status_code = 404
    default_message = "Account not found"


class GenerationNotFound(CreditServiceError):
    status_code = 404
    default_message = "Generation not found"


class InvalidState(CreditServiceError):
    status_code = 400
    default_message = "Invalid state"


class RateLimited(CreditServiceError):
    status_code = 429
    default_message = "Too many requests. Please wait before trying again."

    def __init__(self, limit: int, remaining: int, retry_after: int, reset: int):
        self.limit = limit
        self.remaining = remaining
        self.retry_after = retry_after
        self.reset = reset
        super().__init__()

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "retryAfter": self.retry_after}

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
            "Retry-After": str(self.retry_after),
        }


class ProviderTransient(CreditServiceError):
    """Timeout, connection error or 5xx from a provider. Retry on the next cycle."""
    status_code = 502
    default_message = "Provider temporarily unavailable"


class ProviderFailure(CreditServiceError):
    """The provider explicitly rejected or failed the job."""
    status_code = 502
    default_message = "Provider reported a failure"


class StorageFailure(CreditServiceError):
    status_code = 500
    default_message = "Failed to store generated artifact"
