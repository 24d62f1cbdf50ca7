"""
voice_intel_engine.py -- FastAPI application for voice-memo intelligence.

Runs on ENGINE_PORT (default 3002). Authentication happens upstream; the
caller's identity arrives in the X-User-Id header and every query is scoped
to it. Classification runs inside the request: one awaited model call
followed by a few short database writes.
"""

import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Iterator, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from memo_ingest import taxonomy
from memo_ingest.actions import list_actions, transition
from memo_ingest.classifier import classify_memo
from memo_ingest.context_store import add_context_item, deactivate_context_item, load_active_context
from memo_ingest.errors import (
    DeliveryFailure,
    InvalidTransition,
    ModelCallFailure,
    NotFound,
    SchemaViolation,
    TranscriptionNotReady,
    ValidationError,
)
from memo_ingest.executor import Deliverer, WebhookDeliverer, execute_action
from memo_ingest.extractor import ClaudeCompletion, Completion
from memo_ingest.intelligence import daily_digest, detect_patterns, entity_dashboard, person_brief, render_digest
from memo_ingest.store import make_session_factory
from memo_ingest.transcription import create_memo

load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("voice_intel_engine")

DATABASE_URL: str = os.getenv("VOICE_INTEL_DB_URL", "sqlite:///voice_intel.db")
ENGINE_PORT: int = int(os.getenv("ENGINE_PORT", "3002"))
ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
CLAUDE_MODEL: str = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6")
N8N_WEBHOOK_URL: str = os.getenv("N8N_WEBHOOK_URL", "")
ALLOWED_ORIGINS: list[str] = [
    o.strip() for o in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",") if o.strip()
]


class EngineResponse(BaseModel):
    """Standard engine API response envelope."""
    success: bool
    data: Any = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    success: bool
    version: str = "0.1.0"


class CreateMemoRequest(BaseModel):
    title: Optional[str] = None
    transcript: Optional[str] = Field(default=None, description="Final transcript, when the memo arrives as text")


class TransitionRequest(BaseModel):
    status: str
    rejection_reason: Optional[str] = None


class DigestRequest(BaseModel):
    to: str = Field(min_length=3)


class ContextRequest(BaseModel):
    context_type: str
    name: str
    aliases: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


session_factory: Optional[sessionmaker] = None
completion: Optional[Completion] = None
deliverer: Optional[Deliverer] = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Open the database and the outbound clients."""
    global session_factory, completion, deliverer
    session_factory = make_session_factory(DATABASE_URL)
    if ANTHROPIC_API_KEY:
        completion = ClaudeCompletion(api_key=ANTHROPIC_API_KEY, model=CLAUDE_MODEL)
    else:
        logger.warning("ANTHROPIC_API_KEY not set -- classification will be unavailable")
    if N8N_WEBHOOK_URL:
        deliverer = WebhookDeliverer(N8N_WEBHOOK_URL)
    else:
        logger.warning("N8N_WEBHOOK_URL not set -- approved actions cannot be executed")
    logger.info("Voice Intel Engine started (db=%s, model=%s)", DATABASE_URL, CLAUDE_MODEL)
    yield
    logger.info("Voice Intel Engine shut down")


app = FastAPI(
    title="Voice Intel Engine",
    description="Voice-memo classification, action approval and discovery",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_session() -> Iterator[Session]:
    if session_factory is None:
        raise HTTPException(status_code=503, detail="Database not initialized")
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def get_completion() -> Completion:
    if completion is None:
        raise HTTPException(status_code=503, detail="Classifier not configured -- check ANTHROPIC_API_KEY")
    return completion


def get_deliverer() -> Deliverer:
    if deliverer is None:
        raise HTTPException(status_code=503, detail="Delivery not configured -- check N8N_WEBHOOK_URL")
    return deliverer


def require_user(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header required")
    return x_user_id


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(success=True)


@app.get("/taxonomy", response_model=EngineResponse)
async def get_taxonomy() -> EngineResponse:
    return EngineResponse(success=True, data=taxonomy.describe())


@app.post("/memos", response_model=EngineResponse, status_code=201)
async def post_memo(
    body: CreateMemoRequest,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    memo = create_memo(session, user_id, title=body.title, transcript=body.transcript)
    return EngineResponse(success=True, data=memo.model_dump(mode="json"))


@app.post("/memos/{memo_id}/classify", response_model=EngineResponse)
async def classify(
    memo_id: str,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
    model: Completion = Depends(get_completion),
) -> EngineResponse:
    """Classify one transcribed memo. Failures leave the memo marked failed."""
    try:
        run = await classify_memo(session, memo_id, user_id, model)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except TranscriptionNotReady as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ModelCallFailure as exc:
        raise HTTPException(status_code=502, detail=f"Classification failed: {exc}")
    except SchemaViolation as exc:
        raise HTTPException(status_code=422, detail=f"Classification failed: {exc}")
    return EngineResponse(success=True, data=run.model_dump(mode="json"))


@app.get("/actions", response_model=EngineResponse)
async def get_actions(
    tier: Optional[str] = Query(default=None),
    status: Optional[str] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    if tier is not None and tier not in taxonomy.TIERS:
        raise HTTPException(status_code=422, detail=f"Unknown tier: {tier}")
    try:
        actions = list_actions(session, user_id, tier=tier, status=status, limit=limit)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return EngineResponse(
        success=True,
        data={"actions": [a.model_dump(mode="json") for a in actions], "total": len(actions)},
    )


@app.patch("/actions/{action_id}", response_model=EngineResponse)
async def patch_action(
    action_id: str,
    body: TransitionRequest,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    """Approve, reject or complete one human-gated action."""
    try:
        action = transition(session, action_id, body.status, user_id, body.rejection_reason)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return EngineResponse(success=True, data=action.model_dump(mode="json"))


@app.post("/actions/{action_id}/execute", response_model=EngineResponse)
async def post_execute(
    action_id: str,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
    outbound: Deliverer = Depends(get_deliverer),
) -> EngineResponse:
    try:
        action, result = await execute_action(session, action_id, user_id, outbound)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except InvalidTransition as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return EngineResponse(
        success=True,
        data={"action": action.model_dump(mode="json"), "result": result.model_dump(mode="json")},
    )


@app.get("/context", response_model=EngineResponse)
async def get_context(
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    items = load_active_context(session, user_id)
    return EngineResponse(success=True, data={"items": [i.model_dump(mode="json") for i in items]})


@app.post("/context", response_model=EngineResponse, status_code=201)
async def post_context(
    body: ContextRequest,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    try:
        item = add_context_item(
            session, user_id, body.context_type, body.name, aliases=body.aliases, metadata=body.metadata,
        )
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return EngineResponse(success=True, data=item.model_dump(mode="json"))


@app.delete("/context/{item_id}", response_model=EngineResponse)
async def delete_context(
    item_id: str,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    try:
        item = deactivate_context_item(session, user_id, item_id)
    except NotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return EngineResponse(success=True, data=item.model_dump(mode="json"))


@app.get("/intel/patterns", response_model=EngineResponse)
async def get_patterns(
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    insights = detect_patterns(session, user_id)
    return EngineResponse(success=True, data={"patterns": [i.model_dump(mode="json") for i in insights]})


@app.get("/intel/people/{name}", response_model=EngineResponse)
async def get_person(
    name: str,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    brief = person_brief(session, user_id, name)
    return EngineResponse(success=True, data=brief.model_dump(mode="json"))


@app.get("/intel/digest", response_model=EngineResponse)
async def get_digest(
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    digest = daily_digest(session, user_id)
    subject, body = render_digest(digest)
    return EngineResponse(
        success=True,
        data={"digest": digest.model_dump(mode="json"), "subject": subject, "body": body},
    )


@app.post("/intel/digest/send", response_model=EngineResponse)
async def send_digest(
    body: DigestRequest,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
    outbound: Deliverer = Depends(get_deliverer),
) -> EngineResponse:
    """Deliver the last 24 hours as a plain-text message."""
    subject, text = render_digest(daily_digest(session, user_id))
    try:
        await outbound.send(body.to, subject, text, {"kind": "daily_digest", "user_id": user_id})
    except DeliveryFailure as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    return EngineResponse(success=True, data={"to": body.to, "subject": subject})


@app.get("/intel/entities/{entity:path}", response_model=EngineResponse)
async def get_entity(
    entity: str,
    user_id: str = Depends(require_user),
    session: Session = Depends(get_session),
) -> EngineResponse:
    if entity not in taxonomy.ENTITIES:
        raise HTTPException(status_code=404, detail=f"Unknown entity: {entity}")
    dashboard = entity_dashboard(session, user_id, entity)
    return EngineResponse(success=True, data=dashboard.model_dump(mode="json"))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("memo_engine.voice_intel_engine:app", host="0.0.0.0", port=ENGINE_PORT, reload=True)
