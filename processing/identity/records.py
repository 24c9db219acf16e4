"""
Value objects passed between the contact store gateway and the resolver.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Hashable, Iterable, Iterator, Optional, TypeVar

from processing.models import Contact, LinkPrecedence

T = TypeVar("T", bound=Hashable)


class OrderedSet(Generic[T]):
    """Insertion-ordered collection that keeps the first occurrence of each item."""

    def __init__(self, items: Iterable[T] = ()):
        self._items: dict[T, None] = {}
        self.update(items)

    def add(self, item: T) -> None:
        if item not in self._items:
            self._items[item] = None

    def update(self, items: Iterable[T]) -> None:
        for item in items:
            self.add(item)

    def __contains__(self, item: object) -> bool:
        return item in self._items

    def __iter__(self) -> Iterator[T]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def to_list(self) -> list[T]:
        return list(self._items)

    def __repr__(self) -> str:
        return f"OrderedSet({self.to_list()!r})"


@dataclass(frozen=True)
class ContactRecord:
    """
    Immutable snapshot of one Contact row.

    The gateway hands these out instead of live ORM instances so the
    resolver never mutates rows behind the store's back.
    """
    id: int
    email: Optional[str]
    phone_number: Optional[str]
    link_precedence: LinkPrecedence
    linked_id: Optional[int] = None
    created_at: Optional[datetime] = field(default=None, compare=False)
    updated_at: Optional[datetime] = field(default=None, compare=False)

    @property
    def is_primary(self) -> bool:
        return self.link_precedence is LinkPrecedence.PRIMARY

    @property
    def primary_id(self) -> int:
        """Id of the cluster primary this row belongs to."""
        if self.is_primary:
            return self.id
        return self.linked_id

    @classmethod
    def from_model(cls, contact: Contact) -> "ContactRecord":
        return cls(
            id=contact.id,
            email=contact.email,
            phone_number=contact.phone_number,
            link_precedence=contact.link_precedence,
            linked_id=contact.linked_id,
            created_at=contact.created_at,
            updated_at=contact.updated_at,
        )


@dataclass
class ConsolidatedContact:
    """Consolidated view of one cluster."""
    primary_contact_id: int
    emails: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    secondary_contact_ids: list[int] = field(default_factory=list)

    @classmethod
    def from_cluster(
        cls,
        primary: ContactRecord,
        secondaries: Iterable[ContactRecord],
    ) -> "ConsolidatedContact":
        """
        Build the view from a primary and its secondaries.

        The primary's values come first, then secondaries in ascending id
        order. Missing values are skipped and duplicates keep their first
        position.
        """
        ordered = sorted(secondaries, key=lambda c: c.id)
        members = [primary, *ordered]

        emails = OrderedSet(c.email for c in members if c.email is not None)
        phones = OrderedSet(
            c.phone_number for c in members if c.phone_number is not None
        )
        return cls(
            primary_contact_id=primary.id,
            emails=emails.to_list(),
            phone_numbers=phones.to_list(),
            secondary_contact_ids=[c.id for c in ordered],
        )
