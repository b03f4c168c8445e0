"""Failure taxonomy for controller fetches.

Every fetch either returns data or raises one of the :class:`FetchError`
subclasses below. The scheduler is the only place that catches them.
"""

from __future__ import annotations


class FetchError(Exception):
    """Base class for anything that went wrong talking to the controller."""

    kind = "error"


class TransientError(FetchError):
    """Timeouts, refused connections, 5xx and rate limiting. Retried with backoff."""

    kind = "transient"


class AuthenticationError(FetchError):
    """The API key was rejected (401/403). Fatal at startup, halts polling later."""

    kind = "authentication"


class MalformedResponseError(FetchError):
    """The controller answered, but not with anything we can parse."""

    kind = "malformed"
