"""
Stored turn data model and storage interface.

A stored turn is one persisted row of a chat session: either the visitor's
question or the answer written later by the answering pipeline. Turns are never
updated or deleted by this package. The 'id' is assigned by the backend and is
monotonic, so it is the only ordering the chat view relies on.

'message' is kept exactly as stored. Its shape varies between a bare string
(legacy human turns), an object with 'type' and 'content', and an AI object
whose 'content' is itself a JSON string. Decoding it is the job of
'memorial_chat.chat.transformer', not of the repository.

Concrete implementations: 'InMemoryStoredTurnDatabase', 'SupabaseStoredTurnDatabase'.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class StoredTurn(BaseModel):
    """A raw row of the chat history table."""

    id: int
    session_id: str
    message: Any = None


class StoredTurnDatabase(ABC):
    """Abstract repository for 'StoredTurn' records."""

    @abstractmethod
    async def create_turn(self, session_id: str, message: Any) -> StoredTurn:
        pass

    @abstractmethod
    async def get_turns_by_session_id(self, session_id: str) -> list[StoredTurn]:
        """Return every turn of the session, ascending by 'id'."""
        pass

    @abstractmethod
    async def get_turns_after(self, session_id: str, after_id: int) -> list[StoredTurn]:
        """Return the turns of the session with 'id > after_id', ascending by 'id'."""
        pass
