"""Errors raised by the chat workflow and mapped to HTTP responses."""

from typing import Dict, Optional


class AssistantError(Exception):
    """Base error carrying the HTTP status it should be reported with."""

    status_code: int = 500

    def __init__(self, message: str, headers: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.message = message
        self.headers = headers or {}


class ValidationError(AssistantError):
    status_code = 400


class ConfigurationError(AssistantError):
    status_code = 500


class RateLimitedError(AssistantError):
    status_code = 429


class CapacityExhaustedError(AssistantError):
    """No API key has quota left today; the caller should retry later."""

    status_code = 503

    def __init__(self, message: str = "All API keys exhausted"):
        super().__init__(message, headers={"Retry-After": "60"})


class UpstreamError(AssistantError):
    status_code = 500


class StorageError(AssistantError):
    status_code = 500
