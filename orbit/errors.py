"""
Orbit — exception hierarchy for the introductions core.

Every failure a service can surface to a request handler is an
``OrbitError`` subclass carrying a stable ``code`` and the HTTP status the
API layer maps it to.  Expected races (duplicate insert then re-read,
repeated approval) are resolved inside the services and never raised.
"""

from __future__ import annotations


class OrbitError(Exception):
    """Base exception for all Orbit core errors."""

    code: str = "orbit_error"
    status_code: int = 500

    def __init__(self, message: str = "", **context) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class AuthorizationError(OrbitError):
    """Caller is not the party entitled to perform the action."""

    code = "not_authorized"
    status_code = 403


class NotFoundError(OrbitError):
    """A referenced row (profile, sneak peek, conversation) does not exist."""

    code = "not_found"
    status_code = 404


class InvalidStateError(OrbitError):
    """Operation is illegal from the row's current state."""

    code = "invalid_state"
    status_code = 409


class ForbiddenTransitionError(OrbitError):
    """Client asked for a transition reserved for the system."""

    code = "forbidden_transition"
    status_code = 422


class PreconditionError(OrbitError):
    """A required input condition is unmet."""

    code = "precondition_failed"
    status_code = 400


class RateLimitError(OrbitError):
    """A policy threshold has been reached."""

    code = "rate_limited"
    status_code = 429


class ContextResolutionError(OrbitError):
    """Conversation context could not be determined from the given signals."""

    code = "context_unresolved"
    status_code = 422


class StoreConflictError(OrbitError):
    """A uniqueness violation that re-reading could not resolve."""

    code = "store_conflict"
    status_code = 500
