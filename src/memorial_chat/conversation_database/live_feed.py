"""
Live feed of newly inserted turns.

The chat view subscribes once per session and is notified for every turn the
backend inserts afterwards. Delivery is best effort: a missed notification is
recovered by the refetch policy of the send/await protocol, and a duplicate one
is absorbed by the cache's dedup-by-id merge, so neither implementation here
tries to be exactly-once.

'InMemoryLiveFeed' is fed directly by 'InMemoryStoredTurnDatabase'.
'PollingLiveFeed' works against any 'StoredTurnDatabase' by polling for rows
with an id above the last one seen, which is how the hosted backend is followed.
"""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import Awaitable, Callable

from loguru import logger

from memorial_chat.conversation_database.data_models.stored_turn import StoredTurn, StoredTurnDatabase

TurnCallback = Callable[[StoredTurn], Awaitable[None]]


async def _notify(callback: TurnCallback, turn: StoredTurn) -> None:
    try:
        await callback(turn)
    except Exception:
        logger.exception(f"Subscriber failed on turn {turn.id} of session {turn.session_id}")


class FeedSubscription(ABC):
    """Handle returned by 'LiveFeed.subscribe'. Closing it stops all further callbacks."""

    @abstractmethod
    async def close(self) -> None:
        pass


class LiveFeed(ABC):
    """Abstract source of insert notifications, keyed by session id."""

    @abstractmethod
    async def subscribe(self, session_id: str, callback: TurnCallback) -> FeedSubscription:
        pass


class _InMemorySubscription(FeedSubscription):
    def __init__(self, feed: "InMemoryLiveFeed", session_id: str, callback: TurnCallback):
        self._feed = feed
        self._session_id = session_id
        self._callback = callback

    async def close(self) -> None:
        self._feed._remove(self._session_id, self._callback)


class InMemoryLiveFeed(LiveFeed):
    def __init__(self) -> None:
        self._subscribers: dict[str, list[TurnCallback]] = defaultdict(list)

    async def subscribe(self, session_id: str, callback: TurnCallback) -> FeedSubscription:
        self._subscribers[session_id].append(callback)
        logger.info(f"Live feed subscription opened for session {session_id}")
        return _InMemorySubscription(self, session_id, callback)

    def _remove(self, session_id: str, callback: TurnCallback) -> None:
        callbacks = self._subscribers.get(session_id, [])
        if callback in callbacks:
            callbacks.remove(callback)
            logger.info(f"Live feed subscription closed for session {session_id}")

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, []))

    async def publish(self, turn: StoredTurn) -> None:
        for callback in list(self._subscribers.get(turn.session_id, [])):
            await _notify(callback, turn)


class _PollingSubscription(FeedSubscription):
    def __init__(self, task: "asyncio.Task[None]", session_id: str):
        self._task = task
        self._session_id = session_id

    async def close(self) -> None:
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.exception(f"Polling feed for session {self._session_id} had stopped with an error")
        logger.info(f"Polling feed stopped for session {self._session_id}")


class PollingLiveFeed(LiveFeed):
    """
    Live feed emulated by polling the turn repository.

    The first poll records the highest existing id so only turns inserted after
    the subscription are reported. A failed poll is logged and retried on the
    next tick. A subscriber that raises is logged and keeps receiving later turns;
    neither kind of failure stops the feed or reaches the chat view.
    """

    def __init__(self, turn_db: StoredTurnDatabase, poll_interval: float = 1.0):
        self.turn_db = turn_db
        self.poll_interval = poll_interval

    async def subscribe(self, session_id: str, callback: TurnCallback) -> FeedSubscription:
        existing = await self.turn_db.get_turns_by_session_id(session_id)
        last_id = existing[-1].id if existing else 0
        task = asyncio.create_task(self._poll(session_id, last_id, callback))
        logger.info(f"Polling feed started for session {session_id} after id {last_id}")
        return _PollingSubscription(task, session_id)

    async def _poll(self, session_id: str, last_id: int, callback: TurnCallback) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            try:
                turns = await self.turn_db.get_turns_after(session_id, last_id)
            except Exception as exc:
                logger.warning(f"Polling feed for session {session_id} failed, retrying: {exc}")
                continue
            for turn in turns:
                last_id = max(last_id, turn.id)
                await _notify(callback, turn)
