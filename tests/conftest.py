"""
Shared fixtures: an in-memory SQLite store per test and helpers that seed
and inspect either gateway implementation the same way.
"""

import sys
from pathlib import Path
from typing import Optional

import pytest
from sqlalchemy import create_engine, func, select, update
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from processing.identity import (
    ContactRecord,
    IdentityResolver,
    InMemoryContactGateway,
    KeyedLocks,
    SqlContactGateway,
)
from processing.models import Base, Contact, LinkPrecedence


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


class SqlStore:
    """Seeds and inspects a SqlContactGateway."""

    def __init__(self, db):
        self.db = db
        self.gateway = SqlContactGateway(db)

    def seed(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linked_id: Optional[int] = None,
    ) -> ContactRecord:
        precedence = LinkPrecedence.PRIMARY if linked_id is None else LinkPrecedence.SECONDARY
        with self.gateway.transaction():
            return self.gateway.insert(email, phone, linked_id, precedence)

    def rows(self) -> list[ContactRecord]:
        stmt = (
            select(Contact)
            .where(Contact.deleted_at.is_(None))
            .order_by(Contact.id)
            .execution_options(populate_existing=True)
        )
        return [ContactRecord.from_model(c) for c in self.db.scalars(stmt)]

    def soft_delete(self, contact_id: int) -> None:
        self.db.execute(
            update(Contact)
            .where(Contact.id == contact_id)
            .values(deleted_at=func.now())
            .execution_options(synchronize_session=False)
        )
        self.db.commit()


class MemoryStore:
    """Seeds and inspects an InMemoryContactGateway."""

    def __init__(self):
        self.gateway = InMemoryContactGateway()

    def seed(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
        linked_id: Optional[int] = None,
    ) -> ContactRecord:
        precedence = LinkPrecedence.PRIMARY if linked_id is None else LinkPrecedence.SECONDARY
        with self.gateway.transaction():
            return self.gateway.insert(email, phone, linked_id, precedence)

    def rows(self) -> list[ContactRecord]:
        return self.gateway.all()

    def soft_delete(self, contact_id: int) -> None:
        self.gateway.soft_delete(contact_id)


@pytest.fixture(params=["sql", "memory"])
def store(request):
    if request.param == "sql":
        return SqlStore(request.getfixturevalue("db"))
    return MemoryStore()


@pytest.fixture
def resolver(store):
    return IdentityResolver(store.gateway, locks=KeyedLocks())
