"""Error taxonomy shared by the deck pipeline and the HTTP layer."""

from typing import Any, Optional


class DeckServiceError(Exception):
    """Base error rendered as ``{"message": ...}`` with ``status_code``."""

    status_code = 500
    default_message = "Unable to process deck"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        return {"message": self.message}

    @property
    def headers(self) -> dict[str, str]:
        return {}


class MalformedInputError(DeckServiceError):
    status_code = 400
    default_message = "Invalid JSON"


class DeckValidationError(DeckServiceError):
    """Structural validation failure, carrying every violated field."""

    status_code = 400
    default_message = "Deck JSON failed validation"

    def __init__(self, message: Optional[str] = None, issues: Optional[list[dict]] = None):
        super().__init__(message)
        self.issues = issues or []

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.issues:
            payload["issues"] = self.issues
        return payload


class SizeExceededError(DeckServiceError):
    status_code = 400
    default_message = "Deck too large"


class CaptchaRequiredError(DeckServiceError):
    status_code = 400
    default_message = "Captcha required"


class CaptchaFailedError(DeckServiceError):
    status_code = 400
    default_message = "Captcha verification failed"


class RateLimitedError(DeckServiceError):
    status_code = 429
    default_message = "Too many uploads, please try again later"

    def __init__(self, retry_after: int, limit: int, remaining: int, reset: int):
        super().__init__()
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining
        self.reset = reset

    @property
    def headers(self) -> dict[str, str]:
        return {
            "Retry-After": str(self.retry_after),
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.retry_after),
        }


class UnauthorizedError(DeckServiceError):
    status_code = 401
    default_message = "Unauthorized"


class NotFoundError(DeckServiceError):
    status_code = 404
    default_message = "Deck not found"


class BlobNotFoundError(NotFoundError):
    """The metadata row exists but its blob is gone."""


class StorageUnavailableError(DeckServiceError):
    status_code = 502
    default_message = "Deck storage is unavailable"


class StorageConfigurationError(DeckServiceError):
    status_code = 500
    default_message = "Deck storage is not configured"
