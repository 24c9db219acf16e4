"""
Error taxonomy for identity resolution.

Callers branch on ``error.kind`` rather than on the exception class.
"""

from enum import Enum


class ErrorKind(Enum):
    INVALID_INPUT = "invalid_input"
    CONFLICT_NOT_RESOLVABLE = "conflict_not_resolvable"
    STORE_FAILURE = "store_failure"


class IdentityError(Exception):
    """Base class for every failure surfaced by identity resolution."""

    kind: ErrorKind

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"[{self.kind.value}] {message}")


class InvalidInputError(IdentityError):
    """Neither an email nor a phone number was supplied."""

    kind = ErrorKind.INVALID_INPUT


class ConflictNotResolvableError(IdentityError):
    """The touched clusters kept changing under concurrent merges."""

    kind = ErrorKind.CONFLICT_NOT_RESOLVABLE


class StoreUnavailableError(IdentityError):
    """The contact store could not be reached or a query failed."""

    kind = ErrorKind.STORE_FAILURE
