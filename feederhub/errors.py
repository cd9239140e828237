"""
Error taxonomy for FeederHub.

Every error raised across a stage boundary derives from FeederHubError
and carries the HTTP status the API layer should answer with, optional
structured details, and whether the caller may retry.
"""

from typing import Any, Optional

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError


class FeederHubError(Exception):
    """Base class for caller-visible errors."""

    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        details: Optional[Any] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {
            'success': False,
            'error': self.message,
        }
        if self.details is not None:
            body['details'] = self.details
        if self.retryable:
            body['retryable'] = True
        return body


# -------------------------------------------------------------------------
# Batch-level rejections (nothing is processed)
# -------------------------------------------------------------------------

class BatchShapeError(FeederHubError):
    """Payload is not a non-empty list of observations, or is too large."""
    status_code = 400


class StaleBatchError(FeederHubError):
    """Declared batch timestamp is older than the configured maximum age."""
    status_code = 400


class ValidationFailedError(FeederHubError):
    """Every record in the batch failed validation."""
    status_code = 400


# -------------------------------------------------------------------------
# Identity and authorization
# -------------------------------------------------------------------------

class AdmissionError(FeederHubError):
    status_code = 401


class MissingCredentialError(AdmissionError):
    pass


class MalformedCredentialError(AdmissionError):
    pass


class InvalidCredentialError(AdmissionError):
    pass


class FeederSuspendedError(AdmissionError):
    status_code = 403


class FeederInactiveError(AdmissionError):
    status_code = 403


class RateLimitExceededError(FeederHubError):
    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message, details={'retry_after': retry_after})
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        body = super().to_dict()
        body['retry_after'] = self.retry_after
        return body


# -------------------------------------------------------------------------
# Feeder management
# -------------------------------------------------------------------------

class FeederNotFoundError(FeederHubError):
    status_code = 404


class RegistrationError(FeederHubError):
    status_code = 400


class InvalidParameterError(FeederHubError):
    """Query parameter outside its accepted range."""
    status_code = 400


# -------------------------------------------------------------------------
# Transient downstream failures
# -------------------------------------------------------------------------

class StorageUnavailableError(FeederHubError):
    status_code = 503
    retryable = True


class DownstreamUnavailableError(FeederHubError):
    status_code = 503
    retryable = True


def is_transient(exc: BaseException) -> bool:
    """
    Classify a storage exception as retryable.

    Lock timeouts, dropped connections and pool exhaustion are expected
    to clear on their own; constraint and data errors are not.
    """
    if isinstance(exc, FeederHubError):
        return exc.retryable
    if isinstance(exc, (OperationalError, PoolTimeoutError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return False
