"""
Identity Resolver

Reconciles an incoming (email, phone) fragment against stored contacts.

Decision tree:
a) Nothing matches either value        -> new primary contact
b) Everything lands in one cluster     -> read-only lookup, or a new
                                          secondary when the fragment carries
                                          a value the cluster has not seen
c) Matches span several clusters       -> merge: the oldest primary (lowest
                                          id) stays primary, every other
                                          primary and its secondaries are
                                          re-pointed at it
"""

from dataclasses import dataclass, field
from typing import Optional, Union

from config.logging import logger
from config.settings import settings
from processing.identity.errors import ConflictNotResolvableError, InvalidInputError
from processing.identity.gateway import ContactGateway
from processing.identity.locks import (
    KeyedLocks,
    cluster_key,
    default_locks,
    email_key,
    phone_key,
)
from processing.identity.records import ConsolidatedContact, ContactRecord
from processing.models import LinkPrecedence


def normalize_value(value: Union[str, int, None], field_name: str) -> Optional[str]:
    """
    Strip surrounding whitespace; blank means absent.

    Integers are accepted for phone numbers sent as JSON numbers.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidInputError(f"{field_name} must be a string")
    if isinstance(value, int):
        value = str(value)
    if not isinstance(value, str):
        raise InvalidInputError(f"{field_name} must be a string")
    value = value.strip()
    return value or None


@dataclass
class CandidateSet:
    """Everything one read pass learned about an incoming fragment."""
    email_matches: set[ContactRecord] = field(default_factory=set)
    phone_matches: set[ContactRecord] = field(default_factory=set)
    phone_matched: bool = False
    primaries: dict[int, ContactRecord] = field(default_factory=dict)

    @property
    def candidates(self) -> set[ContactRecord]:
        return self.email_matches | self.phone_matches

    @property
    def collision(self) -> bool:
        """Email and phone each matched something, possibly in different clusters."""
        return bool(self.email_matches) and self.phone_matched

    @property
    def primary_ids(self) -> frozenset[int]:
        return frozenset(self.primaries)


class IdentityResolver:
    """
    Resolves identity fragments into consolidated contacts.

    The resolver only talks to the injected gateway. Reads and writes for one
    fragment run inside one gateway transaction while holding in-process locks
    on the submitted values and on every cluster touched.

    Usage:
        resolver = IdentityResolver(SqlContactGateway(db))
        contact = resolver.resolve(email="a@x.com", phone="111")
        contact.primary_contact_id
    """

    def __init__(
        self,
        gateway: ContactGateway,
        locks: Optional[KeyedLocks] = None,
        max_attempts: Optional[int] = None,
    ):
        self.gateway = gateway
        self.locks = locks if locks is not None else default_locks
        if max_attempts is None:
            max_attempts = settings.RESOLVE_MAX_ATTEMPTS
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")
        self.max_attempts = max_attempts

    def resolve(
        self,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> ConsolidatedContact:
        """
        Resolve a fragment to its consolidated contact.

        Args:
            email: Email address, optional
            phone: Phone number, optional

        Returns:
            ConsolidatedContact for the cluster the fragment belongs to

        Raises:
            InvalidInputError: neither value supplied
            ConflictNotResolvableError: touched clusters kept changing
            StoreUnavailableError: the contact store failed
        """
        email = normalize_value(email, "email")
        phone = normalize_value(phone, "phoneNumber")
        if email is None and phone is None:
            raise InvalidInputError("Either email or phoneNumber must be provided")

        logger.debug(f"Resolving fragment: email={email} phone={phone}")

        value_keys = []
        if email is not None:
            value_keys.append(email_key(email))
        if phone is not None:
            value_keys.append(phone_key(phone))

        with self.locks.hold(value_keys):
            with self.gateway.transaction():
                return self._resolve_locked(email, phone)

    def _resolve_locked(
        self, email: Optional[str], phone: Optional[str]
    ) -> ConsolidatedContact:
        for attempt in range(1, self.max_attempts + 1):
            found = self._find_candidates(email, phone)

            # Value locks keep anyone else from inserting these values, so a
            # miss here stays a miss until we commit
            if not found.primaries:
                return self._create_primary(email, phone)

            with self.locks.hold(cluster_key(pid) for pid in found.primary_ids):
                # A concurrent merge may have re-pointed our candidates
                # between the first read and taking the cluster locks.
                # Nothing is written yet, so the read snapshot can go.
                self.gateway.end_snapshot()
                confirmed = self._find_candidates(email, phone)
                if confirmed.primary_ids != found.primary_ids:
                    logger.info(
                        f"Clusters changed during resolution (attempt {attempt}): "
                        f"{sorted(found.primary_ids)} -> {sorted(confirmed.primary_ids)}"
                    )
                    continue

                primary = self._merge_clusters(confirmed)
                return self._attach_if_novel(primary, email, phone)

        raise ConflictNotResolvableError(
            f"Could not settle clusters for email={email} phone={phone} "
            f"after {self.max_attempts} attempts"
        )

    def _find_candidates(
        self, email: Optional[str], phone: Optional[str]
    ) -> CandidateSet:
        found = CandidateSet()

        if email is not None:
            found.email_matches = self.gateway.find_by_email(email)

        if phone is not None:
            # Skip rows the email query already returned so one row matching
            # both fields is counted once
            found.phone_matches = self.gateway.find_by_phone(
                phone, exclude_ids=[c.id for c in found.email_matches]
            )
            found.phone_matched = bool(found.phone_matches) or any(
                c.phone_number == phone for c in found.email_matches
            )

        candidates = found.candidates
        if not candidates:
            return found

        wanted = {c.primary_id for c in candidates}
        rows = self.gateway.find_by_ids(wanted)
        found.primaries = {c.id: c for c in rows if c.is_primary}

        orphans = [c.id for c in candidates if c.primary_id not in found.primaries]
        if orphans:
            logger.warning(f"Ignoring contacts whose primary is not live: {orphans}")

        return found

    def _create_primary(
        self, email: Optional[str], phone: Optional[str]
    ) -> ConsolidatedContact:
        contact = self.gateway.insert(
            email=email,
            phone=phone,
            linked_id=None,
            precedence=LinkPrecedence.PRIMARY,
        )
        logger.info(f"Created new primary contact {contact.id}")
        return ConsolidatedContact.from_cluster(contact, [])

    def _merge_clusters(self, found: CandidateSet) -> ContactRecord:
        """Fold every touched cluster into the oldest one; return its primary."""
        ordered = sorted(found.primaries.values(), key=lambda c: c.id)
        senior = ordered[0]

        if len(ordered) > 1 and not found.collision:
            # Same value under two primaries: legacy data, heal it anyway
            logger.warning(
                f"Primaries {[c.id for c in ordered]} share a value without a "
                f"cross-field match; merging"
            )

        for junior in ordered[1:]:
            moved = self.gateway.reparent(junior.id, senior.id)
            logger.info(
                f"Merged cluster {junior.id} into {senior.id} ({moved} contacts re-pointed)"
            )

        return senior

    def _attach_if_novel(
        self,
        primary: ContactRecord,
        email: Optional[str],
        phone: Optional[str],
    ) -> ConsolidatedContact:
        secondaries = self.gateway.find_secondaries_of(primary.id)
        members = [primary, *secondaries]

        # A single-field fragment that matched is a pure lookup
        if email is None or phone is None:
            logger.debug(f"Lookup hit cluster {primary.id}")
            return ConsolidatedContact.from_cluster(primary, secondaries)

        known_emails = {c.email for c in members}
        known_phones = {c.phone_number for c in members}
        if email in known_emails and phone in known_phones:
            logger.debug(f"Fragment already known to cluster {primary.id}")
            return ConsolidatedContact.from_cluster(primary, secondaries)

        contact = self.gateway.insert(
            email=email,
            phone=phone,
            linked_id=primary.id,
            precedence=LinkPrecedence.SECONDARY,
        )
        logger.info(f"Created secondary contact {contact.id} linked to {primary.id}")
        return ConsolidatedContact.from_cluster(primary, [*secondaries, contact])

    def cluster_of(self, contact_id: int) -> Optional[ConsolidatedContact]:
        """Consolidated view of the cluster containing contact_id, or None."""
        with self.gateway.transaction():
            rows = self.gateway.find_by_ids([contact_id])
            if not rows:
                return None
            contact = rows.pop()

            if contact.is_primary:
                primary = contact
            else:
                linked = self.gateway.find_by_ids([contact.linked_id])
                if not linked:
                    logger.warning(f"Contact {contact_id} links to missing primary {contact.linked_id}")
                    return None
                primary = linked.pop()

            return ConsolidatedContact.from_cluster(
                primary, self.gateway.find_secondaries_of(primary.id)
            )
