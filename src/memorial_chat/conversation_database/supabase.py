"""
Repositories for the hosted backend.

Tables are read through the PostgREST endpoint ('/rest/v1/<table>') and the
answering function is invoked through '/functions/v1/<name>'. All requests go
through one 'SupabaseClient' so headers, timeouts and error mapping are shared.
Any non-2xx response becomes a 'BackendError' (or a 'DeliveryError' for the
answering function) carrying the status code; network errors are wrapped the
same way.
"""

from typing import Any

import httpx
from loguru import logger

from memorial_chat.config import SupabaseSettings
from memorial_chat.conversation_database.data_models.notebook import Notebook, NotebookDatabase
from memorial_chat.conversation_database.data_models.source import Source, SourceDatabase
from memorial_chat.conversation_database.data_models.stored_turn import StoredTurn, StoredTurnDatabase
from memorial_chat.conversation_database.data_models.tribute import NewTribute, Tribute, TributeDatabase
from memorial_chat.conversation_database.delivery import AnswerDelivery, AnswerRequest
from memorial_chat.exceptions import BackendError, DeliveryError


class SupabaseClient:
    """
    Thin async wrapper over PostgREST and edge functions.

    Pass 'use_service_role=True' for server-side writes (the guestbook); chat
    reads and the answering function use the public key like the browser did.
    """

    def __init__(
        self,
        settings: SupabaseSettings,
        use_service_role: bool = False,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        key = settings.service_role_key if use_service_role and settings.service_role_key else settings.anon_key
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.url.rstrip("/"),
            timeout=settings.timeout,
        )
        self._headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
            "Content-Type": "application/json",
        }

    async def aclose(self) -> None:
        await self._client.aclose()

    async def select(
        self, table: str, params: dict[str, str], count: bool = False
    ) -> tuple[list[dict[str, Any]], int | None]:
        headers = dict(self._headers)
        if count:
            headers["Prefer"] = "count=exact"
        response = await self._request("GET", f"/rest/v1/{table}", params=params, headers=headers)
        total = _parse_content_range(response.headers.get("content-range")) if count else None
        return response.json(), total

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        headers = {**self._headers, "Prefer": "return=representation"}
        response = await self._request("POST", f"/rest/v1/{table}", json=row, headers=headers)
        rows = response.json()
        return rows[0] if isinstance(rows, list) else rows

    async def invoke(self, function: str, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(f"/functions/v1/{function}", json=body, headers=self._headers)
        except httpx.RequestError as exc:
            raise DeliveryError(f"Network error calling {function}: {exc}") from exc
        if not response.is_success:
            raise DeliveryError(
                f"Function {function} failed: HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json() if response.content else {}

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.RequestError as exc:
            logger.error(f"{method} {url} failed: {exc}")
            raise BackendError(f"Network error: {exc}") from exc
        if not response.is_success:
            logger.error(f"{method} {url} returned HTTP {response.status_code}")
            raise BackendError(f"HTTP {response.status_code}: {response.text[:200]}", status_code=response.status_code)
        return response


def _parse_content_range(header: str | None) -> int:
    """'0-49/123' -> 123. PostgREST sends '*/0' for an empty range."""
    if not header or "/" not in header:
        return 0
    total = header.rsplit("/", 1)[1]
    return int(total) if total.isdigit() else 0


class SupabaseStoredTurnDatabase(StoredTurnDatabase):
    def __init__(self, client: SupabaseClient):
        self.client = client
        self.table = client.settings.turns_table

    async def create_turn(self, session_id: str, message: Any) -> StoredTurn:
        row = await self.client.insert(self.table, {"session_id": session_id, "message": message})
        return StoredTurn.model_validate(row)

    async def get_turns_by_session_id(self, session_id: str) -> list[StoredTurn]:
        rows, _ = await self.client.select(
            self.table, {"select": "*", "session_id": f"eq.{session_id}", "order": "id.asc"}
        )
        return [StoredTurn.model_validate(row) for row in rows]

    async def get_turns_after(self, session_id: str, after_id: int) -> list[StoredTurn]:
        rows, _ = await self.client.select(
            self.table,
            {"select": "*", "session_id": f"eq.{session_id}", "id": f"gt.{after_id}", "order": "id.asc"},
        )
        return [StoredTurn.model_validate(row) for row in rows]


class SupabaseSourceDatabase(SourceDatabase):
    def __init__(self, client: SupabaseClient):
        self.client = client
        self.table = client.settings.sources_table

    async def get_sources_by_notebook_id(self, notebook_id: str) -> list[Source]:
        rows, _ = await self.client.select(
            self.table, {"select": "*", "notebook_id": f"eq.{notebook_id}", "order": "created_at.desc"}
        )
        return [Source.model_validate(row) for row in rows]

    async def get_source_by_id(self, source_id: str) -> Source | None:
        rows, _ = await self.client.select(self.table, {"select": "*", "id": f"eq.{source_id}", "limit": "1"})
        return Source.model_validate(rows[0]) if rows else None


class SupabaseNotebookDatabase(NotebookDatabase):
    def __init__(self, client: SupabaseClient):
        self.client = client
        self.table = client.settings.notebooks_table

    async def get_notebook_by_id(self, notebook_id: str) -> Notebook | None:
        rows, _ = await self.client.select(self.table, {"select": "*", "id": f"eq.{notebook_id}", "limit": "1"})
        return Notebook.model_validate(rows[0]) if rows else None


class SupabaseTributeDatabase(TributeDatabase):
    def __init__(self, client: SupabaseClient):
        self.client = client
        self.table = client.settings.tributes_table

    async def create_tribute(self, tribute: NewTribute) -> Tribute:
        row = await self.client.insert(self.table, {**tribute.model_dump(), "is_deleted": False})
        return Tribute.model_validate(row)

    async def list_tributes(self, limit: int, offset: int) -> tuple[list[Tribute], int]:
        rows, total = await self.client.select(
            self.table,
            {
                "select": "*",
                "is_deleted": "eq.false",
                "order": "created_at.desc",
                "offset": str(offset),
                "limit": str(limit),
            },
            count=True,
        )
        return [Tribute.model_validate(row) for row in rows], total or 0


class SupabaseAnswerDelivery(AnswerDelivery):
    def __init__(self, client: SupabaseClient):
        self.client = client
        self.function = client.settings.answer_function

    async def deliver(self, request: AnswerRequest) -> dict[str, Any]:
        logger.info(f"Sending question for session {request.session_id} to {self.function}")
        return await self.client.invoke(self.function, request.model_dump())
