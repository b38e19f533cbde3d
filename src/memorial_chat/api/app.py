"""
FastAPI application.

'create_app' binds a 'MemorialController' to the routes below. Error mapping:

    TributeValidationError -> 400   SendRejectedError -> 409
    BackendError           -> 500   DeliveryError     -> 502

Guestbook errors keep the Vietnamese messages the site shows to visitors, in an
'{"error": ...}' body; every other route uses FastAPI's '{"detail": ...}'.
"""

import os
import time
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel

from memorial_chat import __version__
from memorial_chat.chat.citations import Citation, NormalizedMessage
from memorial_chat.chat.navigation import SourceView
from memorial_chat.controller import MemorialController, build_supabase_controller
from memorial_chat.conversation_database.data_models.notebook import Notebook
from memorial_chat.conversation_database.data_models.source import Source
from memorial_chat.exceptions import BackendError, DeliveryError, SendRejectedError, TributeValidationError
from memorial_chat.tributes import TRIBUTE_THANKS, TributeInput

SAVE_FAILED = "Lỗi khi lưu dữ liệu"
QUERY_FAILED = "Lỗi khi truy vấn dữ liệu"
SERVER_ERROR = "Đã xảy ra lỗi trên server"


class SessionCreated(BaseModel):
    session_id: str


class MessageBody(BaseModel):
    message: str


def get_controller(request: Request) -> MemorialController:
    return request.app.state.controller


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_app(controller: MemorialController | None = None) -> FastAPI:
    """Build the application. Without a controller, one is built from the 'SUPABASE_*' environment."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"memorial-chat {__version__} starting")
        yield
        await app.state.controller.aclose()
        logger.info("memorial-chat stopped")

    app = FastAPI(title="Memorial Chat API", version=__version__, lifespan=lifespan)
    app.state.controller = controller or build_supabase_controller()

    @app.middleware("http")
    async def log_latency(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f} ms)")
        return response

    @app.exception_handler(TributeValidationError)
    async def tribute_invalid(request: Request, exc: TributeValidationError) -> JSONResponse:
        return _error(status.HTTP_400_BAD_REQUEST, str(exc))

    @app.exception_handler(SendRejectedError)
    async def send_rejected(request: Request, exc: SendRejectedError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc), "reason": exc.reason})

    @app.exception_handler(DeliveryError)
    async def delivery_failed(request: Request, exc: DeliveryError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"detail": str(exc)})

    @app.exception_handler(BackendError)
    async def backend_failed(request: Request, exc: BackendError) -> JSONResponse:
        logger.error(f"{request.method} {request.url.path}: backend error: {exc}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, SERVER_ERROR)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/api/tributes", status_code=status.HTTP_201_CREATED)
    async def create_tribute(submission: TributeInput, ctl: MemorialController = Depends(get_controller)):
        try:
            tribute = await ctl.create_tribute(submission)
        except BackendError as exc:
            logger.error(f"Saving tribute failed: {exc}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, SAVE_FAILED)
        return {"success": True, "data": tribute.model_dump(), "message": TRIBUTE_THANKS}

    @app.get("/api/tributes")
    async def list_tributes(
        limit: int | None = Query(default=None, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        ctl: MemorialController = Depends(get_controller),
    ):
        try:
            page = await ctl.list_tributes(limit=limit, offset=offset)
        except BackendError as exc:
            logger.error(f"Listing tributes failed: {exc}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, QUERY_FAILED)
        return {"success": True, **page.model_dump(by_alias=True)}

    @app.get("/api/tributes/cards")
    async def list_tribute_cards(
        limit: int | None = Query(default=None, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        ctl: MemorialController = Depends(get_controller),
    ):
        try:
            cards, page = await ctl.list_tribute_cards(limit=limit, offset=offset)
        except BackendError as exc:
            logger.error(f"Listing tribute cards failed: {exc}")
            return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, QUERY_FAILED)
        return {
            "success": True,
            "data": [card.model_dump() for card in cards],
            "pagination": page.pagination.model_dump(by_alias=True),
        }

    @app.get("/api/notebooks/{notebook_id}")
    async def get_notebook(notebook_id: str, ctl: MemorialController = Depends(get_controller)) -> Notebook:
        notebook = await ctl.get_notebook(notebook_id)
        if notebook is None:
            raise HTTPException(status_code=404, detail="Notebook not found")
        return notebook

    @app.get("/api/notebooks/{notebook_id}/sources")
    async def get_sources(notebook_id: str, ctl: MemorialController = Depends(get_controller)) -> list[Source]:
        return await ctl.get_sources(notebook_id)

    @app.post("/api/chat/sessions", status_code=status.HTTP_201_CREATED)
    async def new_session(ctl: MemorialController = Depends(get_controller)) -> SessionCreated:
        return SessionCreated(session_id=ctl.new_session_id())

    @app.get("/api/chat/sessions/{session_id}/messages")
    async def get_messages(
        session_id: str,
        notebook_id: str = Query(...),
        ctl: MemorialController = Depends(get_controller),
    ) -> list[NormalizedMessage]:
        return await ctl.get_messages(session_id, notebook_id)

    @app.post("/api/chat/sessions/{session_id}/messages", status_code=status.HTTP_202_ACCEPTED)
    async def send_message(
        session_id: str,
        body: MessageBody,
        notebook_id: str = Query(...),
        ctl: MemorialController = Depends(get_controller),
    ) -> dict:
        return await ctl.send_message(session_id, notebook_id, body.message)

    @app.post("/api/chat/citations/view")
    async def view_citation(citation: Citation, ctl: MemorialController = Depends(get_controller)) -> SourceView:
        return await ctl.view_citation(citation)

    @app.get("/api/sources/{source_id}/view")
    async def view_source(source_id: str, ctl: MemorialController = Depends(get_controller)) -> SourceView:
        view = await ctl.view_source(source_id)
        if view is None:
            raise HTTPException(status_code=404, detail="Source not found")
        return view

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
