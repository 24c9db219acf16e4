"""
Contact Store Gateway

Typed query operations over the Contact table. No business rules live
here: the resolver decides, the gateway reads and writes.

Two implementations share one interface:
- SqlContactGateway: SQLAlchemy session bound, used by the service
- InMemoryContactGateway: dict backed, used by tests and the CLI --memory mode
"""

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timezone
from typing import ContextManager, Iterable, Optional, Protocol

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import logger
from processing.identity.errors import StoreUnavailableError
from processing.identity.records import ContactRecord
from processing.models import Contact, LinkPrecedence


class ContactGateway(Protocol):
    """Operations the resolver needs from a contact store."""

    def transaction(self) -> ContextManager["ContactGateway"]: ...

    def end_snapshot(self) -> None: ...

    def find_by_email(self, email: str) -> set[ContactRecord]: ...

    def find_by_phone(
        self, phone: str, exclude_ids: Iterable[int] = ()
    ) -> set[ContactRecord]: ...

    def find_by_ids(self, ids: Iterable[int]) -> set[ContactRecord]: ...

    def find_secondaries_of(self, primary_id: int) -> set[ContactRecord]: ...

    def insert(
        self,
        email: Optional[str],
        phone: Optional[str],
        linked_id: Optional[int],
        precedence: LinkPrecedence,
    ) -> ContactRecord: ...

    def reparent(self, old_primary_id: int, new_primary_id: int) -> int: ...


@contextmanager
def _store_errors(operation: str):
    """Re-raise driver/ORM failures as StoreUnavailableError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error(f"Contact store failure during {operation}: {exc}")
        raise StoreUnavailableError(f"Contact store failure during {operation}") from exc


class SqlContactGateway:
    """
    Gateway over a SQLAlchemy session.

    One instance per unit of work; sessions are not shared across threads.

    Usage:
        db = SessionLocal()
        gateway = SqlContactGateway(db)
        with gateway.transaction():
            rows = gateway.find_by_email("a@x.com")
    """

    def __init__(self, db: Session):
        self.db = db
        self._written = False

    @contextmanager
    def transaction(self):
        """Commit on success, roll back on any exception."""
        try:
            yield self
            with _store_errors("commit"):
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        finally:
            self._written = False

    def end_snapshot(self) -> None:
        """
        Drop the current read snapshot so the next read sees committed work.

        Under REPEATABLE READ (the InnoDB default) every read in a transaction
        shares one snapshot. Rolling back the still read-only transaction lets
        the next query start a fresh one. Not allowed once this unit of work
        has written.
        """
        if self._written:
            raise RuntimeError("Cannot end the read snapshot after writing")
        with _store_errors("end_snapshot"):
            self.db.rollback()

    def _live(self):
        # populate_existing: re-reads must replace identity-map copies
        return (
            select(Contact)
            .where(Contact.deleted_at.is_(None))
            .execution_options(populate_existing=True)
        )

    def _fetch(self, stmt, operation: str) -> set[ContactRecord]:
        with _store_errors(operation):
            return {ContactRecord.from_model(c) for c in self.db.scalars(stmt)}

    def find_by_email(self, email: str) -> set[ContactRecord]:
        return self._fetch(self._live().where(Contact.email == email), "find_by_email")

    def find_by_phone(
        self, phone: str, exclude_ids: Iterable[int] = ()
    ) -> set[ContactRecord]:
        stmt = self._live().where(Contact.phone_number == phone)
        exclude_ids = list(exclude_ids)
        if exclude_ids:
            stmt = stmt.where(Contact.id.not_in(exclude_ids))
        return self._fetch(stmt, "find_by_phone")

    def find_by_ids(self, ids: Iterable[int]) -> set[ContactRecord]:
        ids = list(ids)
        if not ids:
            return set()
        return self._fetch(self._live().where(Contact.id.in_(ids)), "find_by_ids")

    def find_secondaries_of(self, primary_id: int) -> set[ContactRecord]:
        return self._fetch(
            self._live().where(Contact.linked_id == primary_id),
            "find_secondaries_of",
        )

    def insert(
        self,
        email: Optional[str],
        phone: Optional[str],
        linked_id: Optional[int],
        precedence: LinkPrecedence,
    ) -> ContactRecord:
        contact = Contact(
            email=email,
            phone_number=phone,
            linked_id=linked_id,
            link_precedence=precedence,
        )
        self._written = True
        with _store_errors("insert"):
            self.db.add(contact)
            self.db.flush()
            self.db.refresh(contact)
        return ContactRecord.from_model(contact)

    def reparent(self, old_primary_id: int, new_primary_id: int) -> int:
        """
        Demote old_primary_id and move its secondaries onto new_primary_id.

        A single UPDATE statement, so the demotion and the re-pointing of
        its secondaries land together or not at all.
        """
        if old_primary_id == new_primary_id:
            raise ValueError("Cannot reparent a contact onto itself")

        stmt = (
            update(Contact)
            .where(Contact.deleted_at.is_(None))
            .where(
                or_(
                    Contact.id == old_primary_id,
                    Contact.linked_id == old_primary_id,
                )
            )
            .values(
                link_precedence=LinkPrecedence.SECONDARY,
                linked_id=new_primary_id,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        self._written = True
        with _store_errors("reparent"):
            result = self.db.execute(stmt)
        return result.rowcount


class InMemoryContactGateway:
    """
    Thread-safe dict-backed gateway.

    Writes made inside transaction() go to a per-thread buffer and only
    reach the shared rows when the outermost transaction commits, so other
    threads never see uncommitted contacts. Writes outside a transaction
    apply immediately.
    """

    def __init__(self):
        self._rows: dict[int, ContactRecord] = {}
        self._deleted: dict[int, datetime] = {}
        self._next_id = 1
        self._mutex = threading.RLock()
        self._local = threading.local()

    @contextmanager
    def transaction(self):
        depth = getattr(self._local, "depth", 0)
        if depth == 0:
            self._local.pending = {}
        self._local.depth = depth + 1
        try:
            yield self
            if depth == 0:
                with self._mutex:
                    self._rows.update(self._local.pending)
        finally:
            # On exception the buffer is simply dropped
            self._local.depth = depth
            if depth == 0:
                self._local.pending = None

    def end_snapshot(self) -> None:
        """Reads always see the latest commits; nothing to drop."""

    def _write(self, record: ContactRecord) -> None:
        pending = getattr(self._local, "pending", None)
        if pending is not None:
            pending[record.id] = record
            return
        with self._mutex:
            self._rows[record.id] = record

    def _live(self) -> list[ContactRecord]:
        with self._mutex:
            rows = dict(self._rows)
            deleted = set(self._deleted)
        rows.update(getattr(self._local, "pending", None) or {})
        return [c for c in rows.values() if c.id not in deleted]

    def find_by_email(self, email: str) -> set[ContactRecord]:
        return {c for c in self._live() if c.email == email}

    def find_by_phone(
        self, phone: str, exclude_ids: Iterable[int] = ()
    ) -> set[ContactRecord]:
        excluded = set(exclude_ids)
        return {
            c for c in self._live()
            if c.phone_number == phone and c.id not in excluded
        }

    def find_by_ids(self, ids: Iterable[int]) -> set[ContactRecord]:
        wanted = set(ids)
        return {c for c in self._live() if c.id in wanted}

    def find_secondaries_of(self, primary_id: int) -> set[ContactRecord]:
        return {c for c in self._live() if c.linked_id == primary_id}

    def insert(
        self,
        email: Optional[str],
        phone: Optional[str],
        linked_id: Optional[int],
        precedence: LinkPrecedence,
    ) -> ContactRecord:
        now = datetime.now(timezone.utc)
        # Ids are never reused, even when the insert is rolled back
        with self._mutex:
            contact_id = self._next_id
            self._next_id += 1
        record = ContactRecord(
            id=contact_id,
            email=email,
            phone_number=phone,
            link_precedence=precedence,
            linked_id=linked_id,
            created_at=now,
            updated_at=now,
        )
        self._write(record)
        return record

    def reparent(self, old_primary_id: int, new_primary_id: int) -> int:
        if old_primary_id == new_primary_id:
            raise ValueError("Cannot reparent a contact onto itself")

        now = datetime.now(timezone.utc)
        affected = [
            c for c in self._live()
            if c.id == old_primary_id or c.linked_id == old_primary_id
        ]
        for contact in affected:
            self._write(
                replace(
                    contact,
                    link_precedence=LinkPrecedence.SECONDARY,
                    linked_id=new_primary_id,
                    updated_at=now,
                )
            )
        return len(affected)

    def soft_delete(self, contact_id: int) -> None:
        """Hide a row from every read, as a set deletedAt column would."""
        with self._mutex:
            self._deleted[contact_id] = datetime.now(timezone.utc)

    def all(self) -> list[ContactRecord]:
        """Every live row visible to this thread, in id order."""
        return sorted(self._live(), key=lambda c: c.id)
