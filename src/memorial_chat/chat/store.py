"""
Per-session message cache fed by initial load, live feed and refetch.

'ConversationCache' is a keyed store: one ordered message list per
'(session_id, notebook_id)' pair, plus a loading flag and the last read error.
All three writers go through the same two operations:

    'replace' - initial load and 'refetch()' swap in the full, freshly read list.
    'merge'   - a live insert is added only if its id is not cached yet, at the
                position its id dictates.

Because both paths key on the backend-assigned id, a turn delivered by the
live feed and by a refetch shows up once, whichever arrives first.
"""

import bisect
from collections.abc import Callable

from loguru import logger
from pydantic import BaseModel, Field

from memorial_chat.chat.citations import NormalizedMessage, SourceInfo
from memorial_chat.chat.transformer import build_source_map, transform_message, transform_messages
from memorial_chat.conversation_database.data_models.source import SourceDatabase
from memorial_chat.conversation_database.data_models.stored_turn import StoredTurn, StoredTurnDatabase
from memorial_chat.conversation_database.delivery import AnswerDelivery, AnswerRequest
from memorial_chat.conversation_database.live_feed import FeedSubscription, LiveFeed
from memorial_chat.exceptions import BackendError, DeliveryError

CacheKey = tuple[str, str]
CountListener = Callable[[int], None]

DEFAULT_USER_ID = "public-user"


class CacheEntry(BaseModel):
    messages: list[NormalizedMessage] = Field(default_factory=list)
    is_loading: bool = True
    error: str | None = None


class ConversationCache:
    def __init__(self) -> None:
        self._entries: dict[CacheKey, CacheEntry] = {}

    def entry(self, key: CacheKey) -> CacheEntry:
        if key not in self._entries:
            self._entries[key] = CacheEntry()
        return self._entries[key]

    def get(self, key: CacheKey) -> CacheEntry | None:
        return self._entries.get(key)

    def messages(self, key: CacheKey) -> list[NormalizedMessage]:
        entry = self._entries.get(key)
        return list(entry.messages) if entry else []

    def __len__(self) -> int:
        return len(self._entries)

    def replace(self, key: CacheKey, messages: list[NormalizedMessage]) -> None:
        """
        Swap in a freshly read list.

        Cached messages newer than everything in the read are kept: they were
        merged from the live feed while the read was in flight.
        """
        unique = {message.id: message for message in messages}
        entry = self.entry(key)
        newest = max(unique, default=0)
        for message in entry.messages:
            if message.id > newest:
                unique[message.id] = message
        entry.messages = [unique[message_id] for message_id in sorted(unique)]
        entry.is_loading = False
        entry.error = None

    def merge(self, key: CacheKey, message: NormalizedMessage) -> bool:
        """Insert 'message' in id order. Returns False, leaving the list untouched, if the id is already cached."""
        entry = self.entry(key)
        ids = [m.id for m in entry.messages]
        position = bisect.bisect_left(ids, message.id)
        if position < len(ids) and ids[position] == message.id:
            logger.debug(f"Message {message.id} already cached, skipping")
            return False
        entry.messages.insert(position, message)
        return True

    def discard(self, key: CacheKey) -> None:
        self._entries.pop(key, None)


class ConversationStore:
    """
    Reads, caches and follows the turns of chat sessions.

    Attributes:
        turn_db: Chat history rows.
        source_db: Notebook sources, re-read whenever a turn needs citation resolution.
        delivery: The answering function.
        live_feed: Insert notifications, one subscription per open session.
        cache: Shared keyed cache; injectable so tests can inspect it.
        user_id: Sent with every question. The memorial site is anonymous.
    """

    def __init__(
        self,
        turn_db: StoredTurnDatabase,
        source_db: SourceDatabase,
        delivery: AnswerDelivery,
        live_feed: LiveFeed,
        cache: ConversationCache | None = None,
        user_id: str = DEFAULT_USER_ID,
    ):
        self.turn_db = turn_db
        self.source_db = source_db
        self.delivery = delivery
        self.live_feed = live_feed
        self.cache = cache or ConversationCache()
        self.user_id = user_id
        self._subscribers: dict[CacheKey, int] = {}

    async def source_map(self, notebook_id: str) -> dict[str, SourceInfo]:
        return build_source_map(await self.source_db.get_sources_by_notebook_id(notebook_id))

    async def read(self, session_id: str, notebook_id: str) -> list[NormalizedMessage]:
        """Read and transform every turn of the session without touching the cache. Raises 'BackendError'."""
        turns = await self.turn_db.get_turns_by_session_id(session_id)
        return transform_messages(turns, await self.source_map(notebook_id))

    async def load(self, session_id: str, notebook_id: str) -> list[NormalizedMessage]:
        """Read every turn of the session and replace the cached list with the transformed result."""
        key = (session_id, notebook_id)
        try:
            messages = await self.read(session_id, notebook_id)
        except BackendError as exc:
            logger.error(f"Loading session {session_id} failed: {exc}")
            entry = self.cache.entry(key)
            entry.is_loading = False
            entry.error = str(exc)
            return list(entry.messages)
        self.cache.replace(key, messages)
        return self.cache.messages(key)

    async def subscribe(self, session_id: str, notebook_id: str) -> "ConversationSubscription":
        """Open a live view of the session. Its cache entry lives until the last view of it is closed."""
        subscription = ConversationSubscription(self, session_id, notebook_id)
        key = subscription.key
        self._subscribers[key] = self._subscribers.get(key, 0) + 1
        try:
            await subscription.open()
        except Exception:
            self._release(key)
            raise
        return subscription

    def _release(self, key: CacheKey) -> None:
        remaining = self._subscribers.get(key, 0) - 1
        if remaining > 0:
            self._subscribers[key] = remaining
            return
        self._subscribers.pop(key, None)
        self.cache.discard(key)
        logger.debug(f"Discarded cached messages of session {key[0]}")

    def subscriber_count(self, session_id: str, notebook_id: str) -> int:
        return self._subscribers.get((session_id, notebook_id), 0)

    async def send_message(self, session_id: str, notebook_id: str, content: str) -> dict:
        """
        Hand the question to the answering function.

        Returns its acknowledgement as soon as the question is accepted; the answer
        arrives later as a new turn. Raises 'DeliveryError' if the call fails.
        """
        request = AnswerRequest(session_id=session_id, notebook_id=notebook_id, message=content, user_id=self.user_id)
        logger.info(f"Sending message for session {session_id} ({len(content)} chars)")
        try:
            acknowledgement = await self.delivery.deliver(request)
        except DeliveryError:
            logger.exception(f"Delivery failed for session {session_id}")
            raise
        except Exception as exc:
            logger.exception(f"Delivery failed for session {session_id}")
            raise DeliveryError(f"Webhook error: {exc}") from exc
        logger.info(f"Message for session {session_id} acknowledged")
        return acknowledgement


class ConversationSubscription:
    """
    The live view of one session, as returned by 'ConversationStore.subscribe'.

    Use as an async context manager, or call 'close()' when the chat view goes
    away; closing tears down the live feed subscription and, once no other view of
    the session is open, drops its cached messages. Listeners registered
    with 'add_listener' receive the message count after every cache change.
    """

    def __init__(self, store: ConversationStore, session_id: str, notebook_id: str):
        self.store = store
        self.session_id = session_id
        self.notebook_id = notebook_id
        self._feed: FeedSubscription | None = None
        self._closed = False
        self._listeners: list[CountListener] = []

    @property
    def key(self) -> CacheKey:
        return (self.session_id, self.notebook_id)

    @property
    def messages(self) -> list[NormalizedMessage]:
        return self.store.cache.messages(self.key)

    @property
    def is_loading(self) -> bool:
        entry = self.store.cache.get(self.key)
        return entry is None or entry.is_loading

    @property
    def error(self) -> str | None:
        entry = self.store.cache.get(self.key)
        return entry.error if entry else None

    @property
    def is_open(self) -> bool:
        return self._feed is not None

    def add_listener(self, listener: CountListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CountListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        count = len(self.store.cache.messages(self.key))
        for listener in list(self._listeners):
            listener(count)

    async def open(self) -> None:
        self._feed = await self.store.live_feed.subscribe(self.session_id, self._on_insert)
        await self.store.load(self.session_id, self.notebook_id)
        self._notify()

    async def _on_insert(self, turn: StoredTurn) -> None:
        logger.info(f"Live feed: turn {turn.id} inserted for session {self.session_id}")
        try:
            source_map = await self.store.source_map(self.notebook_id)
        except BackendError as exc:
            logger.warning(f"Could not refresh sources for turn {turn.id}, citations stay unresolved: {exc}")
            source_map = {}
        if self.store.cache.merge(self.key, transform_message(turn, source_map)):
            self._notify()

    async def refetch(self) -> list[NormalizedMessage]:
        messages = await self.store.load(self.session_id, self.notebook_id)
        self._notify()
        return messages

    async def send_message(self, content: str) -> dict:
        return await self.store.send_message(self.session_id, self.notebook_id, content)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._feed is not None:
            await self._feed.close()
            self._feed = None
        self._listeners.clear()
        self.store._release(self.key)

    async def __aenter__(self) -> "ConversationSubscription":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
