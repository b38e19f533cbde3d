"""
Memorial chat controller (Facade).

'MemorialController' is the single entry point used by the HTTP layer. It wires
the storage repositories, the answering function and the live feed into a
'ConversationStore', and exposes the operations of the memorial site:

    chat        - 'new_session_id', 'get_messages', 'send_message', 'open_chat'
    sources     - 'get_notebook', 'get_sources', 'view_citation', 'view_source'
    guestbook   - 'create_tribute', 'list_tributes'

'build_supabase_controller' assembles a controller against the hosted backend;
tests and local runs build one from the in-memory repositories instead.
"""

from loguru import logger

from memorial_chat.chat.citations import Citation, NormalizedMessage
from memorial_chat.chat.navigation import SourceView, open_citation, open_source
from memorial_chat.chat.protocol import ChatSession, RefetchPolicy, open_chat_session
from memorial_chat.chat.store import ConversationStore
from memorial_chat.config import ChatSettings, SupabaseSettings, TributeSettings
from memorial_chat.conversation_database.data_models.notebook import Notebook, NotebookDatabase
from memorial_chat.conversation_database.data_models.source import Source, SourceDatabase
from memorial_chat.conversation_database.data_models.stored_turn import StoredTurnDatabase
from memorial_chat.conversation_database.data_models.tribute import Tribute, TributeDatabase
from memorial_chat.conversation_database.delivery import AnswerDelivery
from memorial_chat.conversation_database.live_feed import LiveFeed, PollingLiveFeed
from memorial_chat.conversation_database.supabase import (
    SupabaseAnswerDelivery,
    SupabaseClient,
    SupabaseNotebookDatabase,
    SupabaseSourceDatabase,
    SupabaseStoredTurnDatabase,
    SupabaseTributeDatabase,
)
from memorial_chat.exceptions import SendRejectedError, SendRejection
from memorial_chat.tributes import TributeCard, TributeInput, TributePage, prepare_tribute, tribute_cards
from memorial_chat.utils.database import generate_uid


class MemorialController:
    def __init__(
        self,
        turn_db: StoredTurnDatabase,
        source_db: SourceDatabase,
        notebook_db: NotebookDatabase,
        tribute_db: TributeDatabase,
        delivery: AnswerDelivery,
        live_feed: LiveFeed,
        chat_settings: ChatSettings | None = None,
        tribute_settings: TributeSettings | None = None,
        clients: list[SupabaseClient] | None = None,
    ):
        self.chat_settings = chat_settings or ChatSettings()
        self.tribute_settings = tribute_settings or TributeSettings()
        self.source_db = source_db
        self.notebook_db = notebook_db
        self.tribute_db = tribute_db
        self.store = ConversationStore(
            turn_db=turn_db,
            source_db=source_db,
            delivery=delivery,
            live_feed=live_feed,
            user_id=self.chat_settings.user_id,
        )
        self.refetch_policy = RefetchPolicy(
            delays=tuple(self.chat_settings.refetch_delays),
            answer_timeout=self.chat_settings.answer_timeout,
        )
        self._clients = clients or []

    async def aclose(self) -> None:
        for client in self._clients:
            await client.aclose()

    def new_session_id(self) -> str:
        return generate_uid()

    async def get_messages(self, session_id: str, notebook_id: str) -> list[NormalizedMessage]:
        """Current history of a session, read from storage without caching it."""
        return await self.store.read(session_id, notebook_id)

    async def send_message(self, session_id: str, notebook_id: str, text: str) -> dict:
        """
        Forward a question to the answering function.

        Applies the same guards as the chat input: an empty question and a
        notebook without a processed source are refused with 'SendRejectedError'.
        """
        content = text.strip()
        if not content:
            raise SendRejectedError(SendRejection.EMPTY)
        sources = await self.source_db.get_sources_by_notebook_id(notebook_id)
        if not any(source.is_processed for source in sources):
            logger.info(f"Notebook {notebook_id} has no processed source, refusing message")
            raise SendRejectedError(SendRejection.NO_PROCESSED_SOURCE)
        return await self.store.send_message(session_id, notebook_id, content)

    async def open_chat(self, notebook_id: str, session_id: str | None = None) -> ChatSession:
        """Open a live chat session; the caller closes it."""
        return await open_chat_session(self.store, notebook_id, policy=self.refetch_policy, session_id=session_id)

    async def get_notebook(self, notebook_id: str) -> Notebook | None:
        return await self.notebook_db.get_notebook_by_id(notebook_id)

    async def get_sources(self, notebook_id: str) -> list[Source]:
        return await self.source_db.get_sources_by_notebook_id(notebook_id)

    async def view_citation(self, citation: Citation) -> SourceView:
        source = await self.source_db.get_source_by_id(citation.source_id)
        if source is None:
            logger.warning(f"Citation {citation.citation_id} points at missing source {citation.source_id}")
        return open_citation(citation, source)

    async def view_source(self, source_id: str) -> SourceView | None:
        source = await self.source_db.get_source_by_id(source_id)
        if source is None:
            return None
        return open_source(source)

    async def create_tribute(self, submission: TributeInput) -> Tribute:
        tribute = await self.tribute_db.create_tribute(
            prepare_tribute(submission, default_name=self.tribute_settings.default_name)
        )
        logger.info(f"Tribute {tribute.id} recorded for {tribute.name}")
        return tribute

    async def list_tributes(self, limit: int | None = None, offset: int = 0) -> TributePage:
        limit = limit if limit is not None else self.tribute_settings.page_size
        rows, total = await self.tribute_db.list_tributes(limit, offset)
        return TributePage.build(rows, total, limit, offset)

    async def list_tribute_cards(
        self, limit: int | None = None, offset: int = 0
    ) -> tuple[list[TributeCard], TributePage]:
        """One guestbook page converted for the tribute grid, plus the page it came from."""
        page = await self.list_tributes(limit=limit, offset=offset)
        cards = tribute_cards(
            page.data,
            default_name=self.tribute_settings.default_name,
            offset_hours=self.tribute_settings.timezone_offset_hours,
        )
        return cards, page


def build_supabase_controller(
    settings: SupabaseSettings | None = None,
    chat_settings: ChatSettings | None = None,
    tribute_settings: TributeSettings | None = None,
) -> MemorialController:
    """
    Controller backed by the hosted database and answering function.

    Chat reads and the answering call use the public key; guestbook writes use
    the service-role key when one is configured.
    """
    settings = settings or SupabaseSettings()
    chat_settings = chat_settings or ChatSettings()
    client = SupabaseClient(settings)
    admin_client = SupabaseClient(settings, use_service_role=True) if settings.service_role_key else client
    turn_db = SupabaseStoredTurnDatabase(client)
    return MemorialController(
        turn_db=turn_db,
        source_db=SupabaseSourceDatabase(client),
        notebook_db=SupabaseNotebookDatabase(client),
        tribute_db=SupabaseTributeDatabase(admin_client),
        delivery=SupabaseAnswerDelivery(client),
        live_feed=PollingLiveFeed(turn_db, poll_interval=chat_settings.poll_interval),
        chat_settings=chat_settings,
        tribute_settings=tribute_settings,
        clients=[client] if admin_client is client else [client, admin_client],
    )
