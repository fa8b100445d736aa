# ============================================================
# Prompt Relay FastAPI App
# ------------------------------------------------------------
# This app wires everything together:
#   - /api/ai/stream: validated requests relayed to the provider,
#     streamed back with the usage record in-band
#   - prompt reference expansion from the YAML prompt store
#   - OpenAI-compatible upstream, or the Echo client for local dev
#   - per-user prompt selections
# ============================================================

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

# --- Local imports ---
from . import __version__
from .settings import Settings, configure_logging, settings
from .generate.clients.echo_dev_client import EchoDevClient
from .prompts import InMemoryRecordStore, PromptStore, SelectionRepository, TemplateExpander, User
from .prompts.store import NotAuthenticated, PromptLookupError, RecordStore
from .relay.errors import InvalidRequestError, classify_error
from .relay.server import STREAM_HEADERS, ModelClient, RelayServer, validate_request

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# 🔧 Model client / prompt store selection
# ------------------------------------------------------------
def build_model_client(cfg: Settings) -> ModelClient:
    if cfg.USE_ECHO:
        return EchoDevClient()
    from .generate.clients.openai_client import OpenAIClient
    return OpenAIClient.from_settings(cfg)


def build_prompt_store(cfg: Settings) -> PromptStore:
    if not os.path.exists(cfg.PROMPTS_PATH):
        logger.warning("prompt file %s not found; prompt references will not resolve", cfg.PROMPTS_PATH)
        return PromptStore()
    try:
        return PromptStore.from_yaml(cfg.PROMPTS_PATH)
    except PromptLookupError as e:
        logger.error("%s", e)
        return PromptStore()


# ------------------------------------------------------------
# 📦 Pydantic models
# ------------------------------------------------------------
class SelectionList(BaseModel):
    prompt_ids: List[str]


class SelectionStatus(BaseModel):
    prompt_id: str
    selected: bool


# ------------------------------------------------------------
# 🧠 Helpers
# ------------------------------------------------------------
def get_relay_server(request: Request) -> RelayServer:
    state = request.app.state
    if state.model_client is None:
        state.model_client = build_model_client(state.settings)
    if state.prompt_store is None:
        state.prompt_store = build_prompt_store(state.settings)
    return RelayServer(state.model_client, TemplateExpander(state.prompt_store))


def current_user(x_user_id: Optional[str] = Header(default=None)) -> Optional[User]:
    if not x_user_id or not x_user_id.strip():
        return None
    return User(id=x_user_id.strip())


def get_selections(request: Request, user: Optional[User] = Depends(current_user)) -> SelectionRepository:
    return SelectionRepository(request.app.state.selection_records, lambda: user)


router = APIRouter()


# ------------------------------------------------------------
# 💬 Stream relay route
# ------------------------------------------------------------
@router.post("/api/ai/stream")
async def stream(request: Request):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "请求体不是有效的JSON"}, status_code=400)

    try:
        gen_req = validate_request(body)
    except InvalidRequestError as e:
        logger.info("rejected stream request: %s", e.message)
        return JSONResponse({"error": e.message}, status_code=400)

    try:
        relay = get_relay_server(request)
        byte_stream = await relay.open(gen_req)
    except Exception as e:
        classified = classify_error(e)
        logger.error("stream request failed before streaming (%s): %s", classified.category.value, e)
        return JSONResponse(
            {"error": classified.message, "category": classified.category.value},
            status_code=500,
        )

    return StreamingResponse(
        byte_stream,
        media_type="text/plain; charset=utf-8",
        headers=STREAM_HEADERS,
    )


# ------------------------------------------------------------
# 📌 Prompt selections
# ------------------------------------------------------------
@router.get("/api/prompts/selections", response_model=SelectionList)
def list_selections(repo: SelectionRepository = Depends(get_selections)):
    return SelectionList(prompt_ids=repo.list_selected())


@router.get("/api/prompts/selections/{prompt_id}", response_model=SelectionStatus)
def selection_status(prompt_id: str, repo: SelectionRepository = Depends(get_selections)):
    return SelectionStatus(prompt_id=prompt_id, selected=repo.is_selected(prompt_id))


@router.post("/api/prompts/selections/{prompt_id}")
def add_selection(prompt_id: str, repo: SelectionRepository = Depends(get_selections)) -> Dict[str, Any]:
    try:
        s = repo.add(prompt_id)
    except NotAuthenticated as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {
        "id": s.id,
        "user_id": s.user_id,
        "prompt_id": s.prompt_id,
        "created_at": s.created_at.isoformat(),
    }


@router.delete("/api/prompts/selections/{prompt_id}")
def remove_selection(prompt_id: str, repo: SelectionRepository = Depends(get_selections)) -> Dict[str, Any]:
    try:
        repo.remove(prompt_id)
    except NotAuthenticated as e:
        raise HTTPException(status_code=401, detail=str(e))
    return {"ok": True}


# ------------------------------------------------------------
# 🧭 Health checks
# ------------------------------------------------------------
@router.get("/healthz")
def healthz(request: Request):
    cfg = request.app.state.settings
    return {
        "ok": True,
        "env": cfg.ENV,
        "debug": cfg.DEBUG,
        "app": cfg.app_name,
    }


@router.get("/health")
def health(request: Request):
    return {"status": "ok", "env": request.app.state.settings.ENV}


@router.get("/")
def hello(request: Request):
    return {"message": f"{request.app.state.settings.app_name} service running."}


# ------------------------------------------------------------
# 🚀 FastAPI init
# ------------------------------------------------------------
def create_app(
    cfg: Optional[Settings] = None,
    model_client: Optional[ModelClient] = None,
    prompt_store: Optional[PromptStore] = None,
    selection_records: Optional[RecordStore] = None,
) -> FastAPI:
    cfg = cfg or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # raises CredentialsNotConfigured when no API key is set
        configure_logging(cfg.LOG_LEVEL)
        if app.state.model_client is None:
            app.state.model_client = build_model_client(cfg)
        if app.state.prompt_store is None:
            app.state.prompt_store = build_prompt_store(cfg)
        logger.info("%s started env=%s engine=%s", cfg.app_name, cfg.ENV,
                    type(app.state.model_client).__name__)
        yield

    app = FastAPI(title=cfg.app_name, version=__version__, lifespan=lifespan)
    app.state.settings = cfg
    app.state.model_client = model_client
    app.state.prompt_store = prompt_store
    app.state.selection_records = selection_records or InMemoryRecordStore()
    app.include_router(router)
    return app


app = create_app()
