"""
Source data model and storage interface.

Sources are the documents registered under a notebook by the external ingestion
pipeline (uploaded PDFs, pasted text, websites, transcripts). The chat core only
reads them: the id/title/type triple resolves citations, 'content' backs the
source viewer and 'processing_status' decides whether chat is enabled at all.

Concrete implementations: 'InMemorySourceDatabase', 'SupabaseSourceDatabase'.
"""

from abc import ABC, abstractmethod
from enum import StrEnum

from pydantic import BaseModel


class SourceType(StrEnum):
    PDF = "pdf"
    TEXT = "text"
    WEBSITE = "website"
    YOUTUBE = "youtube"
    AUDIO = "audio"
    DOC = "doc"
    MULTIPLE_WEBSITES = "multiple-websites"
    COPIED_TEXT = "copied-text"


class ProcessingStatus(StrEnum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Source(BaseModel):
    """
    A document available for retrieval-augmented answering.

    'type' and 'processing_status' are plain strings compared against
    'SourceType' / 'ProcessingStatus': the ingestion pipeline owns these columns
    and a value this package does not know about must not make the row unreadable.
    """

    id: str
    notebook_id: str
    title: str
    type: str = SourceType.PDF
    content: str | None = None
    summary: str | None = None
    url: str | None = None
    processing_status: str | None = None
    created_at: str | None = None

    @property
    def is_processed(self) -> bool:
        return self.processing_status == ProcessingStatus.COMPLETED


class SourceDatabase(ABC):
    """Abstract repository for 'Source' records."""

    @abstractmethod
    async def get_sources_by_notebook_id(self, notebook_id: str) -> list[Source]:
        """Return the notebook's sources, newest first."""
        pass

    @abstractmethod
    async def get_source_by_id(self, source_id: str) -> Source | None:
        pass
