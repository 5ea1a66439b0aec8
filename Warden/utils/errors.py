# -*- coding: utf-8 -*-

from uuid import uuid4


class WardenException(Exception):
    """Base for all WardenBot exceptions. Raiseable as a fallback."""

    pass


class WardenUserException(WardenException):
    """User-facing error, shown to the staff member as-is."""

    pass


class WardenNotFoundError(WardenUserException):
    """A requested entity (application, ticket) does not exist."""

    pass


class WardenValidationError(WardenUserException):
    """Input is invalid (unknown decision kind, malformed id)."""

    pass


class WardenInfraException(WardenException):
    """Infrastructure failure, triggers an operator DM notification.

    Covers: DB errors, Discord API failures, misconfiguration.
    Raise with ``from original_exc`` to chain the full traceback into the DM.
    """

    pass


class WardenStorageError(WardenInfraException):
    """The store was unreachable or a transaction aborted.

    Nothing of the failed operation was committed. ``correlation_id`` is logged next to the
    original exception and handed to the user so support can find the log line again.
    """

    def __init__(self, message: str = "A database error occurred.", correlation_id: str | None = None):
        super().__init__(message)
        self.correlation_id = correlation_id or new_correlation_id()


def new_correlation_id() -> str:
    return uuid4().hex[:8]
