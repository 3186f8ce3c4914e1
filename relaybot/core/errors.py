"""Failure taxonomy for backend and session errors.

Every error carries the ``FailureKind`` the dispatch engine reports to the chat.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    BACKEND_ERROR = "backend_error"
    RATE_LIMITED = "rate_limited"
    RUN_TIMED_OUT = "run_timed_out"
    EMPTY_RESPONSE = "empty_response"


class RelayError(Exception):
    """Base class for errors raised while producing a reply."""

    kind: FailureKind = FailureKind.BACKEND_ERROR


class BackendUnavailable(RelayError):
    """Network or authentication failure reaching the LLM provider."""


class RateLimited(RelayError):
    """The provider throttled the request."""

    kind = FailureKind.RATE_LIMITED


class MalformedResponse(RelayError):
    """The provider payload lacks the expected content fields."""

    kind = FailureKind.EMPTY_RESPONSE


class RunTimedOut(RelayError):
    """An assistant run did not reach a terminal state within the polling ceiling."""

    kind = FailureKind.RUN_TIMED_OUT


class EmptyResponse(RelayError):
    kind = FailureKind.EMPTY_RESPONSE
