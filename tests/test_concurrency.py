"""
Tests for keyed locks and concurrent resolution.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from processing.identity import (
    ContactRecord,
    IdentityResolver,
    InMemoryContactGateway,
    KeyedLocks,
    SqlContactGateway,
)
from processing.identity.locks import cluster_key, email_key, phone_key
from processing.models import Base, Contact, LinkPrecedence


class SlowGateway(InMemoryContactGateway):
    """Widens the gap between reading and writing so races would show."""

    def find_by_email(self, email):
        rows = super().find_by_email(email)
        time.sleep(0.005)
        return rows

    def find_by_phone(self, phone, exclude_ids=()):
        rows = super().find_by_phone(phone, exclude_ids)
        time.sleep(0.005)
        return rows


def assert_flat_clusters(rows):
    """Every secondary points straight at a live primary."""
    by_id = {c.id: c for c in rows}
    for contact in rows:
        if contact.link_precedence is LinkPrecedence.SECONDARY:
            target = by_id[contact.linked_id]
            assert target.link_precedence is LinkPrecedence.PRIMARY, (
                f"contact {contact.id} points at demoted {target.id}"
            )


# =============================================================================
# KEYED LOCKS
# =============================================================================

def test_lock_keys_normalize():
    assert email_key(" A@X.com ") == email_key("a@x.com")
    assert phone_key(" 111 ") == phone_key("111")
    assert cluster_key(2) < cluster_key(10)


def test_same_key_blocks():
    locks = KeyedLocks()
    entered = threading.Event()

    def contender():
        with locks.hold(["email:a@x.com"]):
            entered.set()

    with locks.hold(["email:a@x.com", "phone:111"]):
        worker = threading.Thread(target=contender)
        worker.start()
        assert not entered.wait(0.1)

    worker.join(5)
    assert entered.is_set()


def test_different_keys_do_not_block():
    locks = KeyedLocks()
    entered = threading.Event()

    def contender():
        with locks.hold(["email:b@x.com"]):
            entered.set()

    with locks.hold(["email:a@x.com"]):
        worker = threading.Thread(target=contender)
        worker.start()
        assert entered.wait(5)

    worker.join(5)


def test_hold_timeout_releases_taken_locks():
    locks = KeyedLocks()
    failed = threading.Event()

    def contender():
        try:
            with locks.hold(["a", "b"], timeout=0.05):
                pass
        except TimeoutError:
            failed.set()

    with locks.hold(["b"]):
        worker = threading.Thread(target=contender)
        worker.start()
        worker.join(5)

    assert failed.is_set()
    # "a" was released when "b" timed out
    with locks.hold(["a"], timeout=0.05):
        pass
    assert len(locks) == 0


def test_registry_forgets_idle_keys():
    locks = KeyedLocks()
    with locks.hold(["a", "b", "a"]):
        assert len(locks) == 2
    assert len(locks) == 0


# =============================================================================
# CONCURRENT RESOLUTION
# =============================================================================

@pytest.mark.parametrize("workers", [8])
def test_concurrent_first_sightings_create_one_primary(workers):
    gateway = SlowGateway()
    locks = KeyedLocks()

    def resolve(_):
        return IdentityResolver(gateway, locks=locks).resolve(email="race@x.com")

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(resolve, range(workers)))

    assert len(gateway.all()) == 1
    assert len({r.primary_contact_id for r in results}) == 1


def test_concurrent_aliases_share_one_primary():
    gateway = SlowGateway()
    locks = KeyedLocks()

    def resolve(i):
        return IdentityResolver(gateway, locks=locks).resolve(
            email="race@x.com", phone=str(100 + i)
        )

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(resolve, range(8)))

    rows = gateway.all()
    primaries = [c for c in rows if c.link_precedence is LinkPrecedence.PRIMARY]
    assert len(primaries) == 1
    assert len(rows) == 8
    assert {r.primary_contact_id for r in results} == {primaries[0].id}
    assert_flat_clusters(rows)


def test_concurrent_merges_leave_flat_single_cluster():
    gateway = SlowGateway()
    locks = KeyedLocks()
    fragments = [
        ("a@x.com", None),
        ("b@x.com", None),
        (None, "1"),
        ("a@x.com", "1"),
        ("b@x.com", "1"),
        ("c@x.com", "1"),
        ("a@x.com", "2"),
        ("c@x.com", None),
    ] * 2

    def resolve(fragment):
        email, phone = fragment
        return IdentityResolver(gateway, locks=locks).resolve(email=email, phone=phone)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(resolve, fragments))

    rows = gateway.all()
    primaries = [c for c in rows if c.link_precedence is LinkPrecedence.PRIMARY]
    assert len(primaries) == 1
    assert_flat_clusters(rows)

    final = IdentityResolver(gateway, locks=locks).resolve(phone="1")
    assert final.emails and set(final.emails) == {"a@x.com", "b@x.com", "c@x.com"}
    assert set(final.phone_numbers) == {"1", "2"}


# =============================================================================
# CONCURRENT RESOLUTION OVER SQL
# =============================================================================

class SlowSqlGateway(SqlContactGateway):
    def find_by_email(self, email):
        rows = super().find_by_email(email)
        time.sleep(0.005)
        return rows


def test_concurrent_merges_over_sql_leave_flat_single_cluster(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'contacts.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        future=True,
    )
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    locks = KeyedLocks()
    fragments = [
        ("a@x.com", None),
        (None, "1"),
        ("b@x.com", "2"),
        ("a@x.com", "2"),
        ("c@x.com", "1"),
        ("b@x.com", "1"),
    ] * 3

    def resolve(fragment):
        email, phone = fragment
        db = session_factory()
        try:
            resolver = IdentityResolver(SlowSqlGateway(db), locks=locks)
            return resolver.resolve(email=email, phone=phone)
        finally:
            db.close()

    try:
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(resolve, fragments))

        db = session_factory()
        try:
            rows = [ContactRecord.from_model(c) for c in db.scalars(select(Contact))]
        finally:
            db.close()
    finally:
        engine.dispose()

    primaries = [c for c in rows if c.link_precedence is LinkPrecedence.PRIMARY]
    assert len(primaries) == 1
    assert_flat_clusters(rows)
    assert {c.email for c in rows} - {None} == {"a@x.com", "b@x.com", "c@x.com"}
    assert {c.phone_number for c in rows} - {None} == {"1", "2"}
