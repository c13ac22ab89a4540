from __future__ import annotations

import logging
import secrets
import uuid
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from .config import BridgeSettings
from .errors import EventStoreError
from .models import TmuxPaneAddress, TurnCompleted
from .routing_memory import RoutingMemory
from .store import SQLiteEventStore, append_turn_completed

logger = logging.getLogger("turnbridge.main")


class TurnCompleteBody(BaseModel):
    """Request body for POST /turn-complete (sent by the agent's stop hook)."""

    session_id: str = Field(min_length=1)
    session_label: str = Field(min_length=1)
    last_user_prompt: str = ""
    assistant_message: str = ""
    main_context: str = ""


def _make_auth_dependency(token: str):
    """Create a FastAPI dependency that validates the Authorization: Bearer token."""
    async def _verify_token(request: Request) -> None:
        if not token:
            return  # no token configured, auth disabled
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Missing or invalid Authorization header")
        provided = auth_header[7:]
        if not secrets.compare_digest(provided, token):
            raise HTTPException(status_code=401, detail="Invalid API token")
    return _verify_token


def build_app(
    store: Any | None = None,
    memory: RoutingMemory | None = None,
    settings: BridgeSettings | None = None,
) -> FastAPI:
    settings = settings or BridgeSettings()
    active_store = store if store is not None else SQLiteEventStore(settings.store_path)
    if hasattr(active_store, "bootstrap"):
        active_store.bootstrap()

    verify_token = _make_auth_dependency(settings.rpc_token)

    app = FastAPI(title="turnbridge", version="0.1.0")
    app.state.store = active_store
    app.state.memory = memory if memory is not None else RoutingMemory()

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/turn-complete", dependencies=[Depends(verify_token)])
    def turn_complete(body: TurnCompleteBody) -> dict[str, bool]:
        trace_id = str(uuid.uuid4())
        logger.info(
            "TurnComplete trace_id=%s session=%s (%s) prompt_chars=%s message_chars=%s",
            trace_id,
            body.session_label,
            body.session_id,
            len(body.last_user_prompt),
            len(body.assistant_message),
        )
        turn = TurnCompleted(
            session_id=body.session_id,
            session_label=body.session_label,
            last_user_prompt=body.last_user_prompt,
            assistant_message=body.assistant_message,
            main_context=body.main_context,
        )
        try:
            append_turn_completed(app.state.store, turn)
        except EventStoreError as exc:
            logger.error("TurnComplete trace_id=%s append failed: %s", trace_id, exc)
            raise HTTPException(status_code=500, detail="event store write failed") from exc
        app.state.memory.refresh(TmuxPaneAddress(body.session_id, body.session_label))
        logger.info("TurnComplete trace_id=%s accepted", trace_id)
        return {"accepted": True}

    @app.get("/routing", dependencies=[Depends(verify_token)])
    def routing() -> dict[str, Any]:
        return app.state.memory.snapshot()

    return app
