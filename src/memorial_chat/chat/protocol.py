"""
Send/await protocol for one chat view.

'ChatSession' is the state machine behind the input box:

    IDLE -> SENDING -> AWAITING_ANSWER -> IDLE        answer arrived
    IDLE -> SENDING -> IDLE                           delivery failed, text restored
    AWAITING_ANSWER -> TIMED_OUT -> IDLE              no answer within 'answer_timeout'
                                                      (a late answer or a new submit leaves it)

On submit the question is echoed immediately and the input cleared. Once the
answering function acknowledges, a typing indicator is shown and 'RefetchPolicy'
schedules a bounded number of refetches, so the answer still appears when the
live feed misses the insert. Arrival is detected from the message count the
subscription reports: growth ending in a human turn means the question itself
was stored (the echo is dropped), growth ending in an AI turn that follows the
stored question means the answer is there.
"""

import asyncio
from collections.abc import Coroutine, Sequence
from enum import StrEnum
from typing import Any

from loguru import logger
from pydantic import BaseModel, model_validator

from memorial_chat.chat.citations import MessageType, NormalizedMessage
from memorial_chat.chat.store import ConversationStore, ConversationSubscription
from memorial_chat.conversation_database.data_models.source import Source
from memorial_chat.exceptions import DeliveryError, SendRejectedError, SendRejection
from memorial_chat.utils.database import generate_uid

ANSWER_TIMED_OUT = "The answer is taking longer than expected. Please try asking again."


class ProtocolState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"
    AWAITING_ANSWER = "awaiting_answer"
    TIMED_OUT = "timed_out"


class RefetchPolicy(BaseModel):
    """
    Fallback reconciliation for a missed live insert.

    Attributes:
        delays: Seconds after acknowledgement at which the session is refetched.
        answer_timeout: Seconds after acknowledgement at which an unanswered
            question moves to 'TIMED_OUT'. 'None' waits forever.
    """

    delays: tuple[float, ...] = (2.0, 5.0, 10.0)
    answer_timeout: float | None = 30.0

    @model_validator(mode="after")
    def _timeout_after_last_refetch(self) -> "RefetchPolicy":
        if self.answer_timeout is not None and self.delays and self.answer_timeout < max(self.delays):
            raise ValueError("answer_timeout must not fire before the last refetch")
        return self


class ChatSession:
    """
    UI-facing state of one mounted chat view.

    Attributes:
        input_text: Current content of the input box.
        pending_echo: The question shown optimistically until the store has it.
        show_typing: Whether the "AI is typing" indicator is visible.
        last_error: Message of the last delivery failure or timeout, cleared on the next submit.
        sources: Last known sources of the notebook; chat is disabled until one is processed.
    """

    def __init__(
        self,
        subscription: ConversationSubscription,
        sources: Sequence[Source] = (),
        policy: RefetchPolicy | None = None,
        owns_subscription: bool = False,
    ):
        self.subscription = subscription
        self.sources = list(sources)
        self.policy = policy or RefetchPolicy()
        self.state = ProtocolState.IDLE
        self.input_text = ""
        self.pending_echo: str | None = None
        self.show_typing = False
        self.last_error: str | None = None
        self._owns_subscription = owns_subscription
        self._timers: set[asyncio.Task[None]] = set()
        self._answered_while_sending = False
        self._asked_after: int | None = None
        self._last_count = len(subscription.messages)
        subscription.add_listener(self._on_count)

    @property
    def session_id(self) -> str:
        return self.subscription.session_id

    @property
    def notebook_id(self) -> str:
        return self.subscription.notebook_id

    @property
    def messages(self) -> list[NormalizedMessage]:
        return self.subscription.messages

    @property
    def has_processed_source(self) -> bool:
        return any(source.is_processed for source in self.sources)

    @property
    def is_chat_disabled(self) -> bool:
        return not self.has_processed_source

    @property
    def can_submit(self) -> bool:
        return self._rejection(self.input_text.strip()) is None

    def placeholder_text(self) -> str:
        if self.is_chat_disabled:
            if not self.sources:
                return "Upload a source to get started..."
            return "Please wait while your sources are being processed..."
        return "Start typing..."

    async def refresh_sources(self) -> list[Source]:
        self.sources = await self.subscription.store.source_db.get_sources_by_notebook_id(self.notebook_id)
        return self.sources

    def _rejection(self, text: str) -> SendRejection | None:
        if not text:
            return SendRejection.EMPTY
        if self.is_chat_disabled:
            return SendRejection.NO_PROCESSED_SOURCE
        if self.state == ProtocolState.SENDING:
            return SendRejection.ALREADY_SENDING
        if self.pending_echo is not None or self.state == ProtocolState.AWAITING_ANSWER:
            return SendRejection.PENDING_ECHO
        return None

    async def submit(self, text: str | None = None) -> dict:
        """
        Send 'text' (or the current input) and start waiting for the answer.

        Raises 'SendRejectedError' without touching any state when the submit is
        not allowed, and re-raises 'DeliveryError' after restoring the input when
        the answering function could not be reached.
        """
        message_text = (text or self.input_text).strip()
        rejection = self._rejection(message_text)
        if rejection is not None:
            logger.info(f"Submit rejected for session {self.session_id}: {rejection}")
            raise SendRejectedError(rejection)

        self.pending_echo = message_text
        self.input_text = ""
        self.last_error = None
        messages = self.messages
        self._asked_after = messages[-1].id if messages else 0
        self.state = ProtocolState.SENDING
        self._answered_while_sending = False

        try:
            acknowledgement = await self.subscription.send_message(message_text)
        except DeliveryError as exc:
            self.pending_echo = None
            self.show_typing = False
            self.input_text = message_text
            self.last_error = str(exc)
            self.state = ProtocolState.IDLE
            raise

        if self._answered_while_sending:
            self.state = ProtocolState.IDLE
            return acknowledgement

        self.state = ProtocolState.AWAITING_ANSWER
        self.show_typing = True
        logger.info(f"Message sent for session {self.session_id}, waiting for the answer")
        self._schedule_reconciliation()
        return acknowledgement

    def _schedule_reconciliation(self) -> None:
        for attempt, delay in enumerate(self.policy.delays, start=1):
            self._start_timer(self._refetch_after(attempt, delay))
        if self.policy.answer_timeout is not None:
            self._start_timer(self._time_out_after(self.policy.answer_timeout))

    def _start_timer(self, coroutine: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coroutine)
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    async def _refetch_after(self, attempt: int, delay: float) -> None:
        await asyncio.sleep(delay)
        if self.state != ProtocolState.AWAITING_ANSWER:
            return
        logger.info(f"Refetch attempt {attempt} for session {self.session_id}")
        try:
            await self.subscription.refetch()
        except Exception:
            logger.exception(f"Refetch attempt {attempt} for session {self.session_id} failed")

    async def _time_out_after(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        if self.state != ProtocolState.AWAITING_ANSWER:
            return
        logger.warning(f"No answer for session {self.session_id} after {timeout}s")
        self.state = ProtocolState.TIMED_OUT
        self.show_typing = False
        self.pending_echo = None
        self.last_error = ANSWER_TIMED_OUT

    def _on_count(self, count: int) -> None:
        if count > self._last_count:
            logger.debug(f"New messages for session {self.session_id}: {count} vs {self._last_count}")
            self.pending_echo = None
            if self._answer_arrived():
                self.show_typing = False
                if self.state == ProtocolState.SENDING:
                    self._answered_while_sending = True
                if self.state == ProtocolState.TIMED_OUT:
                    self.last_error = None
                if self.state in (ProtocolState.AWAITING_ANSWER, ProtocolState.TIMED_OUT):
                    self.state = ProtocolState.IDLE
        self._last_count = count

    def _answer_arrived(self) -> bool:
        """
        Whether the newest turn answers the outstanding question.

        While a question is in flight only an AI turn stored after a human turn
        newer than '_asked_after' counts, so a late answer to an earlier,
        timed-out question does not end the wait. Once timed out, any AI turn does.
        """
        messages = self.messages
        if not messages or messages[-1].message.type != MessageType.AI:
            return False
        if self.state not in (ProtocolState.SENDING, ProtocolState.AWAITING_ANSWER) or self._asked_after is None:
            return True
        asked = False
        for message in messages:
            if message.id <= self._asked_after:
                continue
            if message.message.type == MessageType.HUMAN:
                asked = True
            elif asked:
                return True
        return False

    async def close(self) -> None:
        """Cancel outstanding timers and detach from the subscription."""
        timers = list(self._timers)
        for task in timers:
            task.cancel()
        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
        self._timers.clear()
        self.subscription.remove_listener(self._on_count)
        if self._owns_subscription:
            await self.subscription.close()

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


async def open_chat_session(
    store: ConversationStore,
    notebook_id: str,
    policy: RefetchPolicy | None = None,
    session_id: str | None = None,
) -> ChatSession:
    """Start a fresh session for 'notebook_id': new session id, live subscription, current sources."""
    subscription = await store.subscribe(session_id or generate_uid(), notebook_id)
    session = ChatSession(subscription, policy=policy, owns_subscription=True)
    await session.refresh_sources()
    logger.info(f"Chat session {session.session_id} opened for notebook {notebook_id}")
    return session
