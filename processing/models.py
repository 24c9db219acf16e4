"""
Identity Reconciliation Service - Database Models

SQLAlchemy ORM models for the contact store.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class LinkPrecedence(PyEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(Base):
    """
    One identity fragment: an email, a phone number, or both.

    Rows sharing an email or phone (directly or through linked_id) form a
    cluster with exactly one primary. Secondaries always point straight at
    the cluster's current primary.
    """

    __tablename__ = "Contact"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone_number: Mapped[Optional[str]] = mapped_column(
        "phoneNumber", String(255), index=True
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), index=True)
    linked_id: Mapped[Optional[int]] = mapped_column(
        "linkedId", Integer, ForeignKey("Contact.id"), nullable=True, index=True
    )
    link_precedence: Mapped[LinkPrecedence] = mapped_column(
        "linkPrecedence",
        Enum(
            LinkPrecedence,
            values_callable=lambda e: [member.value for member in e],
            native_enum=False,
            length=10,
        ),
        nullable=False,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        "createdAt", DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        "updatedAt", DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )
    # Soft delete; rows with this set are invisible to resolution
    deleted_at: Mapped[Optional[datetime]] = mapped_column("deletedAt", DateTime)

    __table_args__ = (
        Index("ix_contact_precedence_linked", "linkPrecedence", "linkedId"),
    )

    def __repr__(self) -> str:
        return (
            f"<Contact(id={self.id}, email={self.email}, phone={self.phone_number}, "
            f"precedence={self.link_precedence.value}, linked_id={self.linked_id})>"
        )
