"""
context_store.py -- The per-user knowledge base read by the classifier.

Responsibility:
- Snapshot a user's active context once per classification run
- Explicit user edits: add / update / deactivate (never hard-delete)
- Discovery feedback loop: fold "unknown reference" detections back in,
  insert keyed on (user_id, context_type, name), ignore on conflict
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memo_ingest.errors import DiscoveryMergeFailure, NotFound
from memo_ingest.models import ContextItemView, Discovery
from memo_ingest.store import ContextItem, insert_ignore, new_id, utcnow
from memo_ingest.taxonomy import CONTEXT_TYPES

logger = logging.getLogger(__name__)

DISCOVERY_SOURCE: str = "discovery"


def load_active_context(session: Session, user_id: str) -> list[ContextItemView]:
    """Fetch the active context snapshot for one user, in a stable order."""
    rows = session.scalars(
        select(ContextItem)
        .where(ContextItem.user_id == user_id, ContextItem.is_active.is_(True))
        .order_by(ContextItem.context_type, ContextItem.name)
    ).all()
    return [ContextItemView.model_validate(r) for r in rows]


def add_context_item(
    session: Session,
    user_id: str,
    context_type: str,
    name: str,
    aliases: Optional[list[str]] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> ContextItemView:
    """
    Record a context item on explicit user request.

    If (user, type, name) already exists the human edit wins: aliases and
    metadata are replaced and the row is reactivated.
    """
    if context_type not in CONTEXT_TYPES:
        raise ValueError(f"context_type must be one of {CONTEXT_TYPES}")
    clean = name.strip()
    if not clean:
        raise ValueError("name must not be empty")

    row = session.scalar(
        select(ContextItem).where(
            ContextItem.user_id == user_id,
            ContextItem.context_type == context_type,
            ContextItem.name == clean,
        )
    )
    if row is None:
        row = ContextItem(
            user_id=user_id,
            context_type=context_type,
            name=clean,
            aliases=list(aliases or []),
            metadata_=dict(metadata or {}),
            is_active=True,
        )
        session.add(row)
        logger.info("Context added: user=%s %s '%s'", user_id, context_type, clean)
    else:
        row.aliases = list(aliases or [])
        row.metadata_ = dict(metadata or {})
        row.is_active = True
        logger.info("Context updated: user=%s %s '%s'", user_id, context_type, clean)
    session.commit()
    return ContextItemView.model_validate(row)


def deactivate_context_item(session: Session, user_id: str, item_id: str) -> ContextItemView:
    row = session.get(ContextItem, item_id)
    if row is None or row.user_id != user_id:
        raise NotFound(f"Context item {item_id} not found")
    row.is_active = False
    session.commit()
    logger.info("Context deactivated: user=%s id=%s", user_id, item_id)
    return ContextItemView.model_validate(row)


def upsert_discovery(session: Session, user_id: str, discovery: Discovery) -> bool:
    """
    Insert one discovery; do nothing if the name is already known.

    First-seen inferred context wins, and curated metadata is never
    overwritten. Returns True when a row was inserted.
    """
    name = discovery.name.strip()
    if not name:
        return False
    now = utcnow()
    try:
        stmt = insert_ignore(
            session,
            ContextItem.__table__,
            {
                "id": new_id(),
                "user_id": user_id,
                "context_type": discovery.type,
                "name": name,
                "aliases": [],
                "metadata": {"inferred_context": discovery.inferred_context, "source": DISCOVERY_SOURCE},
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            },
            ["user_id", "context_type", "name"],
        )
        result = session.execute(stmt)
        session.commit()
    except (SQLAlchemyError, NotImplementedError) as exc:
        session.rollback()
        raise DiscoveryMergeFailure(f"Could not merge discovery '{name}': {exc}") from exc
    return bool(result.rowcount)


def merge_discoveries(session: Session, user_id: str, discoveries: Iterable[Discovery]) -> int:
    """
    Fold one run's discoveries into the Context Store.

    Each discovery commits on its own; a failing one is logged and skipped.
    Returns the number of new context items.
    """
    added = 0
    for discovery in discoveries:
        try:
            if upsert_discovery(session, user_id, discovery):
                added += 1
                logger.info("Discovery added: user=%s %s '%s'", user_id, discovery.type, discovery.name)
        except DiscoveryMergeFailure as exc:
            logger.warning("Skipping discovery: %s", exc)
    return added
