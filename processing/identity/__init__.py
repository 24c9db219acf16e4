"""
Identity Reconciliation Module

Consolidates email / phone fragments into clusters with one primary
contact each:
- Contact store gateway (SQLAlchemy or in-memory)
- Identity resolver (match, attach, merge)
- Keyed locks serialising work on the same values
"""

from processing.identity.errors import (
    ConflictNotResolvableError,
    ErrorKind,
    IdentityError,
    InvalidInputError,
    StoreUnavailableError,
)
from processing.identity.gateway import (
    ContactGateway,
    InMemoryContactGateway,
    SqlContactGateway,
)
from processing.identity.locks import KeyedLocks, default_locks
from processing.identity.records import ConsolidatedContact, ContactRecord, OrderedSet
from processing.identity.resolver import IdentityResolver

__all__ = [
    "ConflictNotResolvableError",
    "ConsolidatedContact",
    "ContactGateway",
    "ContactRecord",
    "ErrorKind",
    "IdentityError",
    "IdentityResolver",
    "InMemoryContactGateway",
    "InvalidInputError",
    "KeyedLocks",
    "OrderedSet",
    "SqlContactGateway",
    "StoreUnavailableError",
    "default_locks",
]
