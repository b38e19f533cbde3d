"""
Pytest configuration and fixtures for memorial-chat tests.

Every fixture is built from the in-memory repositories, so no test touches the
network. Notebook 'nb-1' holds one processed source 's1' whose content has 12
lines; 'nb-empty' has no sources and 'nb-pending' only a source still processing.
"""

import pytest

from memorial_chat.chat.store import ConversationStore
from memorial_chat.conversation_database.data_models.notebook import Notebook
from memorial_chat.conversation_database.data_models.source import Source
from memorial_chat.conversation_database.in_memory import (
    InMemoryAnswerDelivery,
    InMemoryNotebookDatabase,
    InMemorySourceDatabase,
    InMemoryStoredTurnDatabase,
    InMemoryTributeDatabase,
    structured_answer,
)
from memorial_chat.conversation_database.live_feed import InMemoryLiveFeed

NOTEBOOK_ID = "nb-1"
SOURCE_CONTENT = "\n".join(f"Line {number} of the biography" for number in range(1, 13))


def answer_citing(source_id: str = "s1", lines: tuple[int, int] = (3, 4)):
    """Answer factory writing a structured answer with one plain and one cited item."""

    def build(request):
        return structured_answer(
            ("Ông sinh năm 1920 ", []),
            (
                "tại Hà Nội.",
                [
                    {
                        "chunk_source_id": source_id,
                        "chunk_index": 0,
                        "chunk_lines_from": lines[0],
                        "chunk_lines_to": lines[1],
                    }
                ],
            ),
        )

    return build


@pytest.fixture
def processed_source() -> Source:
    return Source(
        id="s1",
        notebook_id=NOTEBOOK_ID,
        title="Tiểu sử",
        type="text",
        content=SOURCE_CONTENT,
        summary="Biography of the late professor.",
        processing_status="completed",
        created_at="2025-01-01T00:00:00Z",
    )


@pytest.fixture
def pending_source() -> Source:
    return Source(id="s-pending", notebook_id="nb-pending", title="Scan", type="pdf", processing_status="processing")


@pytest.fixture
def live_feed() -> InMemoryLiveFeed:
    return InMemoryLiveFeed()


@pytest.fixture
def turn_db(live_feed) -> InMemoryStoredTurnDatabase:
    return InMemoryStoredTurnDatabase(live_feed=live_feed)


@pytest.fixture
def source_db(processed_source, pending_source) -> InMemorySourceDatabase:
    return InMemorySourceDatabase([processed_source, pending_source])


@pytest.fixture
def notebook_db() -> InMemoryNotebookDatabase:
    return InMemoryNotebookDatabase([Notebook(id=NOTEBOOK_ID, title="Hồi ký", emoji="📖")])


@pytest.fixture
def tribute_db() -> InMemoryTributeDatabase:
    return InMemoryTributeDatabase()


@pytest.fixture
def delivery(turn_db) -> InMemoryAnswerDelivery:
    return InMemoryAnswerDelivery(turn_db, answer=answer_citing())


@pytest.fixture
def store(turn_db, source_db, delivery, live_feed) -> ConversationStore:
    return ConversationStore(turn_db=turn_db, source_db=source_db, delivery=delivery, live_feed=live_feed)
