"""
Dict-backed repositories.

Used by the test-suite and for running the API locally without the hosted
backend. 'InMemoryStoredTurnDatabase' publishes every insert to an optional
'InMemoryLiveFeed'; pass 'publish=False' to 'create_turn' to simulate a
notification the feed lost. 'InMemoryAnswerDelivery' plays the role of the
answering pipeline: it stores the question and, when 'answer' is configured,
writes the answer turn after 'answer_delay' seconds.
"""

import asyncio
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from loguru import logger

from memorial_chat.conversation_database.data_models.notebook import Notebook, NotebookDatabase
from memorial_chat.conversation_database.data_models.source import Source, SourceDatabase
from memorial_chat.conversation_database.data_models.stored_turn import StoredTurn, StoredTurnDatabase
from memorial_chat.conversation_database.data_models.tribute import NewTribute, Tribute, TributeDatabase
from memorial_chat.conversation_database.delivery import AnswerDelivery, AnswerRequest
from memorial_chat.conversation_database.live_feed import InMemoryLiveFeed
from memorial_chat.exceptions import DeliveryError
from memorial_chat.utils.database import generate_uid


class InMemoryStoredTurnDatabase(StoredTurnDatabase):
    def __init__(self, live_feed: InMemoryLiveFeed | None = None):
        self.live_feed = live_feed
        self._turns: list[StoredTurn] = []
        self._next_id = 1

    async def create_turn(self, session_id: str, message: Any, publish: bool = True) -> StoredTurn:
        turn = StoredTurn(id=self._next_id, session_id=session_id, message=message)
        self._next_id += 1
        self._turns.append(turn)
        if publish and self.live_feed is not None:
            await self.live_feed.publish(turn)
        return turn

    async def get_turns_by_session_id(self, session_id: str) -> list[StoredTurn]:
        return sorted((t for t in self._turns if t.session_id == session_id), key=lambda t: t.id)

    async def get_turns_after(self, session_id: str, after_id: int) -> list[StoredTurn]:
        return [t for t in await self.get_turns_by_session_id(session_id) if t.id > after_id]


class InMemorySourceDatabase(SourceDatabase):
    def __init__(self, sources: list[Source] | None = None):
        self._sources: dict[str, Source] = {s.id: s for s in sources or []}

    def add_source(self, source: Source) -> None:
        self._sources[source.id] = source

    async def get_sources_by_notebook_id(self, notebook_id: str) -> list[Source]:
        sources = [s for s in self._sources.values() if s.notebook_id == notebook_id]
        return sorted(sources, key=lambda s: s.created_at or "", reverse=True)

    async def get_source_by_id(self, source_id: str) -> Source | None:
        return self._sources.get(source_id)


class InMemoryNotebookDatabase(NotebookDatabase):
    def __init__(self, notebooks: list[Notebook] | None = None):
        self._notebooks: dict[str, Notebook] = {n.id: n for n in notebooks or []}

    async def get_notebook_by_id(self, notebook_id: str) -> Notebook | None:
        return self._notebooks.get(notebook_id)


class InMemoryTributeDatabase(TributeDatabase):
    def __init__(self) -> None:
        self._tributes: list[Tribute] = []

    async def create_tribute(self, tribute: NewTribute) -> Tribute:
        # Offset by insert position so rows created in the same instant keep a stable order.
        created_at = datetime.now(timezone.utc) + timedelta(microseconds=len(self._tributes))
        stored = Tribute(
            id=generate_uid(),
            created_at=created_at.isoformat(),
            **tribute.model_dump(),
        )
        self._tributes.append(stored)
        return stored

    async def list_tributes(self, limit: int, offset: int) -> tuple[list[Tribute], int]:
        visible = sorted((t for t in self._tributes if not t.is_deleted), key=lambda t: t.created_at, reverse=True)
        return visible[offset : offset + limit], len(visible)


AnswerFactory = Callable[[AnswerRequest], Any]


class InMemoryAnswerDelivery(AnswerDelivery):
    """
    Stand-in for the answering function.

    Attributes:
        turn_db: Where the human and AI turns are written.
        answer: Builds the stored AI 'message' payload for a request. 'None' means
            the question is acknowledged but never answered.
        answer_delay: Seconds between acknowledgement and the answer insert.
        publish_answer: Whether the answer insert reaches the live feed.
        fail_with: When set, 'deliver' raises 'DeliveryError' with this message.
    """

    def __init__(
        self,
        turn_db: InMemoryStoredTurnDatabase,
        answer: AnswerFactory | None = None,
        answer_delay: float = 0.0,
        publish_answer: bool = True,
        fail_with: str | None = None,
    ):
        self.turn_db = turn_db
        self.answer = answer
        self.answer_delay = answer_delay
        self.publish_answer = publish_answer
        self.fail_with = fail_with
        self.requests: list[AnswerRequest] = []
        self._pending: set[asyncio.Task[None]] = set()

    async def deliver(self, request: AnswerRequest) -> dict[str, Any]:
        self.requests.append(request)
        if self.fail_with is not None:
            raise DeliveryError(self.fail_with, status_code=500)

        await self.turn_db.create_turn(request.session_id, {"type": "human", "content": request.message})
        if self.answer is not None:
            task = asyncio.create_task(self._write_answer(request))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        return {"success": True, "message": "Message queued"}

    async def _write_answer(self, request: AnswerRequest) -> None:
        await asyncio.sleep(self.answer_delay)
        payload = self.answer(request) if self.answer else None
        await self.turn_db.create_turn(request.session_id, payload, publish=self.publish_answer)
        logger.debug(f"Answer written for session {request.session_id}")

    async def wait_for_answers(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending)


def structured_answer(*items: tuple[str, list[dict[str, Any]]]) -> dict[str, Any]:
    """Build an AI payload the way the answering pipeline stores it: JSON 'output' inside 'content'."""
    output = [{"text": text, "citations": citations} for text, citations in items]
    return {"type": "ai", "content": json.dumps({"output": output}), "additional_kwargs": {}, "response_metadata": {}}
