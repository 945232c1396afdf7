"""Error taxonomy shared by the ingress, the queue and the job handlers."""

from typing import Any, List, Optional


class TwincastError(Exception):
    """Base class for all twincast errors."""


class ValidationError(TwincastError):
    """Malformed input. Rejected synchronously, never enqueued."""

    def __init__(self, message: str, errors: Optional[List[Any]] = None):
        super().__init__(message)
        self.errors = errors or []


# Job payloads that fail their queue schema
InvalidPayload = ValidationError


class AuthenticationError(TwincastError):
    """Missing or invalid webhook signature / API secret."""


class LockTimeout(TwincastError):
    """A resource stayed contended beyond the lock retry budget."""

    def __init__(self, resource: str, attempts: int = 0):
        super().__init__(f"Could not acquire lock on {resource} after {attempts} attempts")
        self.resource = resource
        self.attempts = attempts


class ExternalServiceError(TwincastError):
    """A downstream API or model call failed. Retried through job backoff."""

    def __init__(self, service: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{service}: {message}")
        self.service = service
        self.status_code = status_code


class MalformedModelOutput(TwincastError):
    """Structured model output could not be parsed or validated."""

    def __init__(self, message: str, raw_text: str = ""):
        super().__init__(message)
        self.raw_text = raw_text


class InvalidTransition(TwincastError):
    """Illegal agent status change."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid agent status transition: {current} -> {target}")
        self.current = current
        self.target = target


class NotFound(TwincastError):
    """A referenced record does not exist."""
