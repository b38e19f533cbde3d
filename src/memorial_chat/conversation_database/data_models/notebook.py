"""
Notebook data model and storage interface.

A notebook groups the sources and chat sessions of one book on the memorial
site. It is read-only from this package's point of view.

Concrete implementations: 'InMemoryNotebookDatabase', 'SupabaseNotebookDatabase'.
"""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class Notebook(BaseModel):
    id: str
    title: str
    user_id: str | None = None
    emoji: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class NotebookDatabase(ABC):
    """Abstract repository for 'Notebook' records."""

    @abstractmethod
    async def get_notebook_by_id(self, notebook_id: str) -> Notebook | None:
        pass
