"""Typed fetch errors reported per secret request."""
from typing import Optional


class FetchError(Exception):
    """Base class for failures fetching a secret from a provider."""

    retryable = False

    def __init__(self, message: str, endpoint_key: Optional[str] = None, secret_name: Optional[str] = None):
        super().__init__(message)
        self.endpoint_key = endpoint_key
        self.secret_name = secret_name


class AuthError(FetchError):
    """Credential rejected by the endpoint. Never retried automatically."""


class NotFoundError(FetchError):
    """Secret name absent at the endpoint."""


class TransientError(FetchError):
    """Network failure or timeout. Eligible for a bounded retry."""

    retryable = True
