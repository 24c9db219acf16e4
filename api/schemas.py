"""
Request and response models for the HTTP surface.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from processing.identity.records import ConsolidatedContact

# Misspelling expected by clients of the first deployment
LEGACY_PRIMARY_ID_FIELD = "primaryContatctId"


class IdentifyRequest(BaseModel):
    """Body of POST /identify. Both fields optional; the resolver checks that one is present."""

    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")

    @field_validator("email", "phone_number", mode="before")
    @classmethod
    def accept_numbers(cls, value):
        # Phone numbers often arrive as JSON numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class ContactPayload(BaseModel):
    primary_contact_id: int = Field(serialization_alias="primaryContactId")
    emails: list[str]
    phone_numbers: list[str] = Field(serialization_alias="phoneNumbers")
    secondary_contact_ids: list[int] = Field(serialization_alias="secondaryContactIds")

    @classmethod
    def from_consolidated(cls, contact: ConsolidatedContact) -> "ContactPayload":
        return cls(
            primary_contact_id=contact.primary_contact_id,
            emails=contact.emails,
            phone_numbers=contact.phone_numbers,
            secondary_contact_ids=contact.secondary_contact_ids,
        )


class ErrorResponse(BaseModel):
    error: bool = True
    success: bool = False
    code: str
    message: str


def render_contact(contact: ConsolidatedContact, legacy_names: bool = False) -> dict:
    """Wire form of a consolidated contact, wrapped under "contact"."""
    body = ContactPayload.from_consolidated(contact).model_dump(by_alias=True)
    if legacy_names:
        body = {
            (LEGACY_PRIMARY_ID_FIELD if key == "primaryContactId" else key): value
            for key, value in body.items()
        }
    return {"contact": body}
