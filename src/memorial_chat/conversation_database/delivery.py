"""
Answer delivery.

Asking a question is fire-and-acknowledge: the answering function confirms it
received the question and the answer shows up later as a new stored turn.
'deliver' therefore returns the function's acknowledgement body, never the
answer, and raises 'DeliveryError' when the call itself fails.

Concrete implementations: 'InMemoryAnswerDelivery', 'SupabaseAnswerDelivery'.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel


class AnswerRequest(BaseModel):
    """Body sent to the answering function."""

    session_id: str
    notebook_id: str
    message: str
    user_id: str


class AnswerDelivery(ABC):
    @abstractmethod
    async def deliver(self, request: AnswerRequest) -> dict[str, Any]:
        pass
