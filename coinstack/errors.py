"""Structured error taxonomy for the coinstack fetch layer.

Callers can catch specific failure modes without resorting to bare
``Exception``:

  - ``NotFound``           – upstream says the resource does not exist.
                             Terminal: never retried, never cached.
  - ``RateLimited``        – HTTP 429; retried with backoff.
  - ``TransientError``     – connection/timeout/DNS failure; retried.
  - ``PermanentUpstream``  – any other non-success response or an
                             undecodable body; retried within the same
                             attempt budget.
  - ``RequestFailed``      – raised once the retry budget is exhausted,
                             carrying the last upstream error.
"""
from __future__ import annotations

NOT_FOUND_MESSAGE = "resource does not exist"
UNAVAILABLE_MESSAGE = "temporarily unavailable"


class CoinstackError(Exception):
    """Base error for all coinstack subsystems."""

    @property
    def user_message(self) -> str:
        return UNAVAILABLE_MESSAGE


class UpstreamError(CoinstackError):
    """One failed upstream attempt."""

    retryable = True

    def __init__(self, message: str, *, url: str = "", status: int | None = None):
        self.url = url
        self.status = status
        super().__init__(message)


class NotFound(UpstreamError):
    """The requested resource does not exist upstream (e.g. unknown coin id)."""

    retryable = False

    @property
    def user_message(self) -> str:
        return NOT_FOUND_MESSAGE


class RateLimited(UpstreamError):
    """Upstream throttling signal (HTTP 429)."""


class TransientError(UpstreamError):
    """Request-level failure (connection, timeout, redirect loop, bad encoding)."""


class PermanentUpstream(UpstreamError):
    """Any other non-success response."""


class RequestFailed(CoinstackError):
    """All attempts for a request failed."""

    def __init__(self, url: str, last_error: Exception | None, attempts: int):
        self.url = url
        self.last_error = last_error
        self.attempts = attempts
        detail = f"{type(last_error).__name__}: {last_error}" if last_error else "no response"
        super().__init__(f"{url} failed after {attempts} attempt(s) ({detail})")
