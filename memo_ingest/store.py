"""
store.py -- SQLAlchemy tables for memos, classifications, actions and context.

Responsibility:
- Declare the four persisted surfaces (VoiceMemo, Classification, ActionItem,
  ContextItem) and the unique index that makes discovery merges safe
- Build engines and session factories from a database URL
- Provide the dialect-specific "insert, ignore on conflict" statement
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class ContextItem(Base):
    """One remembered fact the classifier should know about."""

    __tablename__ = "voice_intel_context"
    __table_args__ = (
        UniqueConstraint("user_id", "context_type", "name", name="uq_context_user_type_name"),
        Index("idx_context_user_active", "user_id", "is_active"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    context_type: Mapped[str] = mapped_column(String(16), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    aliases: Mapped[list[str]] = mapped_column(JSON, default=list)
    metadata_: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class VoiceMemo(Base):
    """One recorded or transcribed unit of input."""

    __tablename__ = "voice_memos"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    transcript: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    subtitles: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_status: Mapped[str] = mapped_column(String(16), default="pending")
    classification_status: Mapped[str] = mapped_column(String(16), default="not_started")
    classification_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Classification(Base):
    """One immutable structured judgment about a memo."""

    __tablename__ = "voice_intel_classifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    voice_memo_id: Mapped[str] = mapped_column(ForeignKey("voice_memos.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    entity: Mapped[str] = mapped_column(String(64), nullable=False)
    activity: Mapped[str] = mapped_column(String(32), nullable=False)
    action_type: Mapped[str] = mapped_column(String(16), nullable=False)
    confidence_scores: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)
    people: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    prophetic_words: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    has_prophetic_content: Mapped[bool] = mapped_column(Boolean, default=False)
    discoveries: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    action_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    brain_summary: Mapped[str] = mapped_column(Text, default="")
    title_suggestion: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    processing_model: Mapped[str] = mapped_column(String(64), nullable=False)
    processing_duration_ms: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ActionItem(Base):
    """One unit of follow-up work extracted from a classification."""

    __tablename__ = "voice_intel_actions"
    __table_args__ = (Index("idx_actions_user_tier_status", "user_id", "tier", "status"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    classification_id: Mapped[Optional[str]] = mapped_column(
        ForeignKey("voice_intel_classifications.id"), nullable=True
    )
    voice_memo_id: Mapped[Optional[str]] = mapped_column(ForeignKey("voice_memos.id"), nullable=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    tier: Mapped[str] = mapped_column(String(8), nullable=False)
    action_type: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    related_entity: Mapped[str] = mapped_column(String(64), default="")
    related_people: Mapped[list[str]] = mapped_column(JSON, default=list)
    delivery_payload: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=1)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ---------------------------------------------------------------------------
# Engine / session helpers
# ---------------------------------------------------------------------------

def make_engine(url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if url.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, **kwargs)

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record) -> None:
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return engine
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(url: str, create_schema: bool = True) -> sessionmaker[Session]:
    engine = make_engine(url)
    if create_schema:
        Base.metadata.create_all(engine)
        logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))
    return sessionmaker(bind=engine, expire_on_commit=False)


def insert_ignore(session: Session, table, values: dict[str, Any], conflict_columns: list[str]):
    """
    Build an INSERT that does nothing when the unique key already exists.

    The unique constraint in the database decides; concurrent writers need
    no application-level lock.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(**values)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(**values)
    else:
        raise NotImplementedError(f"insert-ignore is not supported on {dialect}")
    return stmt.on_conflict_do_nothing(index_elements=conflict_columns)
