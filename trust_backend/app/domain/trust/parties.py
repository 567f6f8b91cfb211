"""
Buyer and seller party references.

A party is stored as an external user id, a free-text name, or both. It is
resolved once here into a tagged union so nothing downstream branches on
the storage shape.
"""

from typing import Annotated, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field


class PartyReference(BaseModel):
    """A bare reference to a user managed by the identity service."""
    kind: Literal["reference"] = "reference"
    id: int


class EmbeddedParty(BaseModel):
    """A party captured by name, optionally linked to a user id."""
    kind: Literal["embedded"] = "embedded"
    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=200)


PartyRef = Annotated[Union[PartyReference, EmbeddedParty], Field(discriminator="kind")]


def resolve_party(party_id: Optional[int], party_name: Optional[str]) -> Optional[PartyRef]:
    if party_name:
        return EmbeddedParty(id=party_id, name=party_name)
    if party_id is not None:
        return PartyReference(id=party_id)
    return None


def party_columns(party: Optional[PartyRef]) -> Tuple[Optional[int], Optional[str]]:
    """Split a party into its (id, name) storage columns."""
    if party is None:
        return None, None
    if isinstance(party, EmbeddedParty):
        return party.id, party.name
    return party.id, None


def party_label(party: Optional[PartyRef]) -> str:
    if party is None:
        return "-"
    if isinstance(party, EmbeddedParty):
        return party.name
    return f"User #{party.id}"
