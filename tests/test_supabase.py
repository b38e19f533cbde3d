"""Tests for the hosted-backend repositories, against a mocked HTTP transport."""

import json

import httpx
import pytest

from memorial_chat.config import SupabaseSettings
from memorial_chat.conversation_database.data_models.tribute import NewTribute
from memorial_chat.conversation_database.delivery import AnswerRequest
from memorial_chat.conversation_database.supabase import (
    SupabaseAnswerDelivery,
    SupabaseClient,
    SupabaseSourceDatabase,
    SupabaseStoredTurnDatabase,
    SupabaseTributeDatabase,
    _parse_content_range,
)
from memorial_chat.exceptions import BackendError, DeliveryError

SETTINGS = SupabaseSettings(url="https://project.supabase.co", anon_key="anon", service_role_key="service")


def make_client(handler, use_service_role: bool = False) -> SupabaseClient:
    http_client = httpx.AsyncClient(base_url=SETTINGS.url, transport=httpx.MockTransport(handler))
    return SupabaseClient(SETTINGS, use_service_role=use_service_role, http_client=http_client)


class TestReads:
    """Tests for PostgREST reads."""

    async def test_turns_query(self):
        """Turns are filtered by session and ordered by id."""
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            seen["apikey"] = request.headers["apikey"]
            return httpx.Response(200, json=[{"id": 1, "session_id": "sess", "message": "Xin chào"}])

        turns = await SupabaseStoredTurnDatabase(make_client(handler)).get_turns_by_session_id("sess")

        assert turns[0].message == "Xin chào"
        assert seen["path"] == "/rest/v1/n8n_chat_histories"
        assert seen["params"] == {"select": "*", "session_id": "eq.sess", "order": "id.asc"}
        assert seen["apikey"] == "anon"

    async def test_unknown_source_type_is_readable(self):
        """A source type this package does not know still loads."""

        def handler(request):
            return httpx.Response(
                200,
                json=[
                    {
                        "id": "s1",
                        "notebook_id": "nb",
                        "title": "Ghi âm",
                        "type": "podcast",
                        "processing_status": "completed",
                    }
                ],
            )

        sources = await SupabaseSourceDatabase(make_client(handler)).get_sources_by_notebook_id("nb")
        assert sources[0].type == "podcast"
        assert sources[0].is_processed

    async def test_error_status_raises_backend_error(self):
        """A non-2xx answer becomes BackendError with the status code."""

        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(BackendError) as excinfo:
            await SupabaseSourceDatabase(make_client(handler)).get_source_by_id("s1")
        assert excinfo.value.status_code == 503

    async def test_network_error_raises_backend_error(self):
        """Transport errors are wrapped as BackendError."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(BackendError):
            await SupabaseStoredTurnDatabase(make_client(handler)).get_turns_after("sess", 3)


class TestTributes:
    """Tests for guestbook writes and paged reads."""

    async def test_list_reads_total_from_content_range(self):
        """The total comes from the content-range header."""
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            seen["prefer"] = request.headers.get("prefer")
            row = {"id": "t1", "name": "Tưởng nhớ", "contents": "Lời", "created_at": "2025-10-23T17:00:00Z"}
            return httpx.Response(200, json=[row], headers={"content-range": "0-0/7"})

        rows, total = await SupabaseTributeDatabase(make_client(handler, use_service_role=True)).list_tributes(1, 0)

        assert total == 7
        assert rows[0].id == "t1"
        assert seen["params"]["is_deleted"] == "eq.false"
        assert seen["params"]["order"] == "created_at.desc"
        assert seen["prefer"] == "count=exact"

    async def test_create_uses_service_role(self):
        """Inserts ask for the stored row back and use the service key."""
        seen = {}

        def handler(request):
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers["authorization"]
            seen["prefer"] = request.headers["prefer"]
            return httpx.Response(201, json=[{**seen["body"], "id": "t9", "created_at": "2025-10-23T17:00:00Z"}])

        database = SupabaseTributeDatabase(make_client(handler, use_service_role=True))
        stored = await database.create_tribute(NewTribute(name="Tưởng nhớ", contents="Lời"))

        assert stored.id == "t9"
        assert seen["body"]["is_deleted"] is False
        assert seen["auth"] == "Bearer service"
        assert seen["prefer"] == "return=representation"

    @pytest.mark.parametrize("header, total", [("0-49/123", 123), ("*/0", 0), (None, 0), ("0-1/*", 0)])
    def test_parse_content_range(self, header, total):
        """Totals are read from the part after the slash."""
        assert _parse_content_range(header) == total


class TestAnswerDelivery:
    """Tests for the answering function call."""

    async def test_invokes_function(self):
        """The request body goes to /functions/v1/<name>."""
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"success": True})

        request = AnswerRequest(session_id="sess", notebook_id="nb", message="Câu hỏi", user_id="public-user")
        acknowledgement = await SupabaseAnswerDelivery(make_client(handler)).deliver(request)

        assert acknowledgement == {"success": True}
        assert seen["path"] == "/functions/v1/send-chat-message"
        assert seen["body"]["user_id"] == "public-user"

    async def test_function_error_raises_delivery_error(self):
        """A failing function becomes DeliveryError."""

        def handler(request):
            return httpx.Response(500, json={"error": "boom"})

        request = AnswerRequest(session_id="sess", notebook_id="nb", message="Câu hỏi", user_id="public-user")
        with pytest.raises(DeliveryError) as excinfo:
            await SupabaseAnswerDelivery(make_client(handler)).deliver(request)
        assert excinfo.value.status_code == 500
