"""
Tribute data model and storage interface.

Tributes are the guestbook entries of the memorial site: a name, an optional
position or organisation, and a message and/or an image. Rows are soft-deleted
by moderators ('is_deleted'); listings never include deleted rows.

Concrete implementations: 'InMemoryTributeDatabase', 'SupabaseTributeDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Tribute(BaseModel):
    """A stored guestbook entry."""

    id: str
    name: str
    position: str | None = None
    contents: str | None = None
    image_url: str | None = None
    is_deleted: bool = False
    created_at: str


class NewTribute(BaseModel):
    """A validated entry ready to be inserted. The backend assigns 'id' and 'created_at'."""

    name: str
    position: str | None = None
    contents: str | None = None
    image_url: str | None = None


class TributeDatabase(ABC):
    """Abstract repository for 'Tribute' records."""

    @abstractmethod
    async def create_tribute(self, tribute: NewTribute) -> Tribute:
        pass

    @abstractmethod
    async def list_tributes(self, limit: int, offset: int) -> tuple[list[Tribute], int]:
        """Return one page of non-deleted tributes, newest first, and the total count."""
        pass
