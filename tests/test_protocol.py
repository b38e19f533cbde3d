"""Tests for the send/await protocol of the chat input."""

import asyncio

import pytest
from pydantic import ValidationError

from memorial_chat.chat.protocol import ANSWER_TIMED_OUT, ProtocolState, RefetchPolicy, open_chat_session
from memorial_chat.conversation_database.delivery import AnswerDelivery
from memorial_chat.exceptions import DeliveryError, SendRejectedError, SendRejection

NOTEBOOK_ID = "nb-1"

FAST = RefetchPolicy(delays=(0.02, 0.04), answer_timeout=0.5)


class AnsweringImmediately(AnswerDelivery):
    """Writes question and answer before acknowledging, as a fast pipeline can."""

    def __init__(self, turn_db):
        self.turn_db = turn_db

    async def deliver(self, request):
        await self.turn_db.create_turn(request.session_id, {"type": "human", "content": request.message})
        await self.turn_db.create_turn(request.session_id, {"type": "ai", "content": "Năm 1920."})
        return {"success": True}


class TestSubmitRejection:
    """Tests for submits the protocol refuses."""

    async def test_no_processed_source(self, store):
        """A question in a notebook without a completed source is refused and the input kept."""
        async with await open_chat_session(store, "nb-pending", policy=FAST) as session:
            session.input_text = "Ông sinh năm nào?"
            with pytest.raises(SendRejectedError) as excinfo:
                await session.submit()

            assert excinfo.value.reason == SendRejection.NO_PROCESSED_SOURCE
            assert session.input_text == "Ông sinh năm nào?"
            assert session.pending_echo is None
            assert session.state == ProtocolState.IDLE
            assert session.is_chat_disabled

    async def test_empty_input(self, store):
        """Whitespace-only input is refused."""
        async with await open_chat_session(store, NOTEBOOK_ID, policy=FAST) as session:
            session.input_text = "   "
            assert not session.can_submit
            with pytest.raises(SendRejectedError) as excinfo:
                await session.submit()
            assert excinfo.value.reason == SendRejection.EMPTY

    async def test_second_question_while_awaiting(self, store, delivery):
        """A second question is refused until the first is answered."""
        delivery.answer = None
        async with await open_chat_session(store, NOTEBOOK_ID, policy=FAST) as session:
            await session.submit("Câu hỏi một")
            with pytest.raises(SendRejectedError) as excinfo:
                await session.submit("Câu hỏi hai")
            assert excinfo.value.reason == SendRejection.PENDING_ECHO
            assert len(delivery.requests) == 1


class TestPlaceholder:
    """Tests for the input placeholder."""

    @pytest.mark.parametrize(
        "notebook_id, expected",
        [
            ("nb-empty", "Upload a source to get started..."),
            ("nb-pending", "Please wait while your sources are being processed..."),
            (NOTEBOOK_ID, "Start typing..."),
        ],
    )
    async def test_placeholder_text(self, store, notebook_id, expected):
        """The placeholder reflects the notebook's source state."""
        async with await open_chat_session(store, notebook_id, policy=FAST) as session:
            assert session.placeholder_text() == expected


class TestSendAndAwait:
    """Tests for the happy path and its recovery paths."""

    async def test_answer_arrives_by_live_feed(self, store, delivery):
        """After acknowledgement typing shows; the answer insert returns to idle."""
        async with await open_chat_session(store, NOTEBOOK_ID, policy=FAST) as session:
            session.input_text = "Ông sinh năm nào?"
            await session.submit()

            assert session.input_text == ""
            assert session.state == ProtocolState.AWAITING_ANSWER
            assert session.show_typing
            assert session.pending_echo is None

            await delivery.wait_for_answers()
            assert session.state == ProtocolState.IDLE
            assert not session.show_typing
            assert [m.message.type for m in session.messages] == ["human", "ai"]

    async def test_delivery_failure_restores_input(self, store, delivery):
        """A failed delivery removes the echo, restores the input and hides typing."""
        delivery.fail_with = "Webhook error: 500"
        async with await open_chat_session(store, NOTEBOOK_ID, policy=FAST) as session:
            with pytest.raises(DeliveryError):
                await session.submit("Ông sinh năm nào?")

            assert session.pending_echo is None
            assert session.input_text == "Ông sinh năm nào?"
            assert not session.show_typing
            assert session.last_error == "Webhook error: 500"
            assert session.state == ProtocolState.IDLE

    async def test_missed_push_recovered_by_refetch(self, store, delivery):
        """An answer the live feed never announced is picked up by a scheduled refetch."""
        delivery.publish_answer = False
        async with await open_chat_session(store, NOTEBOOK_ID, policy=FAST) as session:
            await session.submit("Ông sinh năm nào?")
            await delivery.wait_for_answers()
            assert len(session.messages) == 1
            assert session.show_typing

            await asyncio.sleep(0.1)
            assert len(session.messages) == 2
            assert session.state == ProtocolState.IDLE
            assert not session.show_typing

    async def test_answer_before_acknowledgement(self, store, turn_db):
        """An answer stored before the call returns leaves the session idle without typing."""
        store.delivery = AnsweringImmediately(turn_db)
        async with await open_chat_session(store, NOTEBOOK_ID, policy=FAST) as session:
            await session.submit("Ông sinh năm nào?")
            assert session.state == ProtocolState.IDLE
            assert not session.show_typing
            assert len(session.messages) == 2


class TestTimeout:
    """Tests for the terminal timeout state."""

    async def test_unanswered_question_times_out(self, store, delivery, turn_db):
        """No answer within the timeout ends typing with an error; a late answer clears it."""
        delivery.answer = None
        policy = RefetchPolicy(delays=(0.01,), answer_timeout=0.05)
        async with await open_chat_session(store, NOTEBOOK_ID, policy=policy) as session:
            await session.submit("Ông sinh năm nào?")
            await asyncio.sleep(0.1)

            assert session.state == ProtocolState.TIMED_OUT
            assert not session.show_typing
            assert session.last_error == ANSWER_TIMED_OUT

            await turn_db.create_turn(session.session_id, {"type": "ai", "content": "Xin lỗi, trả lời muộn."})
            assert session.state == ProtocolState.IDLE
            assert session.last_error is None

    async def test_submit_allowed_after_timeout(self, store, delivery):
        """A timed-out session accepts a new question."""
        delivery.answer = None
        policy = RefetchPolicy(delays=(), answer_timeout=0.02)
        async with await open_chat_session(store, NOTEBOOK_ID, policy=policy) as session:
            await session.submit("Câu hỏi một")
            await asyncio.sleep(0.05)
            assert session.state == ProtocolState.TIMED_OUT
            await session.submit("Câu hỏi hai")
            assert session.state == ProtocolState.AWAITING_ANSWER
            assert session.last_error is None


class TestLifecycle:
    """Tests for policy validation and teardown."""

    def test_timeout_must_follow_last_refetch(self):
        """A timeout earlier than the last refetch is rejected."""
        with pytest.raises(ValidationError):
            RefetchPolicy(delays=(2, 5, 10), answer_timeout=5)

    def test_default_policy(self):
        """The default policy refetches at 2, 5 and 10 seconds."""
        assert RefetchPolicy().delays == (2.0, 5.0, 10.0)

    async def test_close_cancels_timers(self, store, live_feed, delivery):
        """Closing the session cancels pending refetches and the live subscription."""
        delivery.answer = None
        policy = RefetchPolicy(delays=(10,), answer_timeout=20)
        session = await open_chat_session(store, NOTEBOOK_ID, policy=policy)
        await session.submit("Ông sinh năm nào?")
        assert session._timers

        await session.close()
        assert not session._timers
        assert live_feed.subscriber_count(session.session_id) == 0


class LateAnswerFirst(AnswerDelivery):
    """Stores the answer to an earlier question just before the new question."""

    def __init__(self, turn_db):
        self.turn_db = turn_db

    async def deliver(self, request):
        await self.turn_db.create_turn(request.session_id, {"type": "ai", "content": "Trả lời câu hỏi một."})
        await self.turn_db.create_turn(request.session_id, {"type": "human", "content": request.message})
        return {"success": True}


class TestLateAnswers:
    """Tests for answers that belong to an earlier, timed-out question."""

    async def test_late_answer_does_not_end_new_wait(self, store, delivery, turn_db):
        """Only an AI turn after the new question's human turn counts as its answer."""
        delivery.answer = None
        policy = RefetchPolicy(delays=(), answer_timeout=0.02)
        async with await open_chat_session(store, NOTEBOOK_ID, policy=policy) as session:
            await session.submit("Câu hỏi một")
            await asyncio.sleep(0.05)
            assert session.state == ProtocolState.TIMED_OUT

            session.policy = RefetchPolicy(delays=(), answer_timeout=None)
            store.delivery = LateAnswerFirst(turn_db)
            await session.submit("Câu hỏi hai")
            assert session.state == ProtocolState.AWAITING_ANSWER
            assert session.show_typing

            await turn_db.create_turn(session.session_id, {"type": "ai", "content": "Trả lời câu hỏi hai."})
            assert session.state == ProtocolState.IDLE
            assert not session.show_typing
