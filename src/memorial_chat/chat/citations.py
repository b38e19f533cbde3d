"""
Message and citation data models.

An AI answer is stored as a list of text segments, each optionally pointing at
one citation. A citation records which source document and which line range
the segment was grounded on. 'CitedContent' keeps both lists together and is
the only structured content a 'ChatMessage' can carry; every other message
content is a plain string.
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from memorial_chat.conversation_database.data_models.source import ProcessingStatus, SourceType

__all__ = [
    "ChatMessage",
    "Citation",
    "CitedContent",
    "MessageSegment",
    "MessageType",
    "NormalizedMessage",
    "ProcessingStatus",
    "SourceInfo",
    "SourceType",
]

UNKNOWN_SOURCE_TITLE = "Unknown Source"


class MessageType(StrEnum):
    HUMAN = "human"
    AI = "ai"


class SourceInfo(BaseModel):
    """The part of a 'Source' needed to label a citation."""

    title: str
    type: str = SourceType.PDF


class MessageSegment(BaseModel):
    text: str
    citation_id: int | None = None


class Citation(BaseModel):
    """
    A pointer from a segment of an answer to a line range of a source.

    'chunk_lines_from' / 'chunk_lines_to' are 1-based and inclusive. They come
    straight from the answering pipeline and are not validated here; see
    'has_valid_lines' and 'memorial_chat.chat.navigation'.
    """

    citation_id: int
    source_id: str
    source_title: str
    source_type: str = SourceType.PDF
    chunk_index: int | None = None
    excerpt: str | None = None
    chunk_lines_from: int | None = None
    chunk_lines_to: int | None = None

    @property
    def has_valid_lines(self) -> bool:
        return (
            isinstance(self.chunk_lines_from, int)
            and isinstance(self.chunk_lines_to, int)
            and self.chunk_lines_from > 0
        )


class CitedContent(BaseModel):
    segments: list[MessageSegment] = Field(default_factory=list)
    citations: list[Citation] = Field(default_factory=list)

    def citation_for(self, segment: MessageSegment) -> Citation | None:
        if segment.citation_id is None:
            return None
        return next((c for c in self.citations if c.citation_id == segment.citation_id), None)

    @property
    def text(self) -> str:
        return "".join(segment.text for segment in self.segments)


class ChatMessage(BaseModel):
    type: MessageType
    content: str | CitedContent
    additional_kwargs: dict[str, Any] | None = None
    response_metadata: dict[str, Any] | None = None
    tool_calls: list[Any] | None = None
    invalid_tool_calls: list[Any] | None = None


class NormalizedMessage(BaseModel):
    """A stored turn after decoding, ready to render."""

    id: int
    session_id: str
    message: ChatMessage

    @property
    def is_human(self) -> bool:
        return self.message.type == MessageType.HUMAN
