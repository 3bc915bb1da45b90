"""Exceptions raised by session operations.

Validation problems are raised before any remote write is attempted.
Network failures never surface here; they are ``SyncFailure`` in the sync
layer and are turned into user-visible state by the controller.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for session-level errors."""


class ValidationError(SessionError):
    """Input rejected locally (empty name, bad deadline, empty order...)."""


class DeadlineClosedError(SessionError):
    """The ordering deadline has passed; item changes are rejected."""


class OrderClosedError(SessionError):
    """The admin closed ordering; item changes are rejected."""


class AdminRequiredError(SessionError):
    """Only the session admin may perform this action."""


class TransitionError(SessionError):
    """Illegal session phase transition or failed transition guard."""


class NotJoinableError(SessionError):
    """The session does not exist or has already been closed."""


class ItemNotFoundError(SessionError):
    """No order item carries the given instance id."""


class DocumentFormatError(SessionError):
    """A remote document could not be normalized into a session record."""


class NoActiveSessionError(SessionError):
    """The action needs a joined session."""
