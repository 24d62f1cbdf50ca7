"""
actions.py -- Action items and the tiered-autonomy approval state machine.

Responsibility:
- Build ActionItem rows from extracted items; the tier decides the initial
  status (red -> pending, yellow/green -> auto_completed at creation)
- Enforce the transition table for human-gated items
- List a user's actions for review queues

Transitions (only for items that started pending):

    pending  -> approved | rejected
    approved -> completed

rejected, completed and auto_completed are terminal.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from memo_ingest.errors import InvalidTransition, NotFound, ValidationError
from memo_ingest.models import ActionItemView, ExtractedActionItem
from memo_ingest.store import ActionItem, utcnow
from memo_ingest.taxonomy import ACTION_STATUSES, is_auto_executing, tier_priority

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"approved", "rejected"}),
    "approved": frozenset({"completed"}),
    "rejected": frozenset(),
    "completed": frozenset(),
    "auto_completed": frozenset(),
}


def initial_status(tier: str) -> str:
    return "auto_completed" if is_auto_executing(tier) else "pending"


def build_action_row(
    item: ExtractedActionItem,
    user_id: str,
    classification_id: Optional[str],
    voice_memo_id: Optional[str],
) -> ActionItem:
    """Turn one extracted item into a row, applying the tier rule."""
    status = initial_status(item.tier)
    return ActionItem(
        classification_id=classification_id,
        voice_memo_id=voice_memo_id,
        user_id=user_id,
        tier=item.tier,
        action_type=item.action_type,
        title=item.title,
        description=item.description,
        related_entity=item.related_entity,
        related_people=list(item.related_people),
        delivery_payload=dict(item.delivery_payload),
        status=status,
        priority=tier_priority(item.tier),
        completed_at=utcnow() if status == "auto_completed" else None,
    )


def get_owned_action(session: Session, action_id: str, user_id: str) -> ActionItem:
    row = session.get(ActionItem, action_id)
    if row is None or row.user_id != user_id:
        raise NotFound(f"Action {action_id} not found")
    return row


def apply_transition(
    row: ActionItem,
    target_status: str,
    rejection_reason: Optional[str] = None,
) -> None:
    """Validate and apply a status change on a loaded row (no commit)."""
    allowed = ALLOWED_TRANSITIONS.get(row.status, frozenset())
    if target_status not in allowed:
        raise InvalidTransition(row.status, target_status)
    if target_status == "rejected":
        reason = (rejection_reason or "").strip()
        if not reason:
            raise ValidationError("rejection_reason is required to reject an action")
        row.rejection_reason = reason

    row.status = target_status
    if target_status == "approved":
        row.approved_at = utcnow()
    elif target_status == "completed":
        row.completed_at = utcnow()


def transition(
    session: Session,
    action_id: str,
    target_status: str,
    actor: str,
    rejection_reason: Optional[str] = None,
) -> ActionItemView:
    """
    Move one action to target_status on behalf of actor.

    Checked in order: the action exists and belongs to actor (NotFound),
    the move is in the transition table (InvalidTransition), a rejection
    carries a reason (ValidationError).
    """
    row = get_owned_action(session, action_id, actor)
    previous = row.status
    apply_transition(row, target_status, rejection_reason)
    session.commit()
    logger.info("Action %s: %s -> %s (by %s)", action_id, previous, target_status, actor)
    return ActionItemView.model_validate(row)


def list_actions(
    session: Session,
    user_id: str,
    tier: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
) -> list[ActionItemView]:
    if status is not None and status not in ACTION_STATUSES:
        raise ValidationError(f"status must be one of {ACTION_STATUSES}")
    query = select(ActionItem).where(ActionItem.user_id == user_id)
    if tier:
        query = query.where(ActionItem.tier == tier)
    if status:
        query = query.where(ActionItem.status == status)
    query = query.order_by(ActionItem.priority.desc(), ActionItem.created_at.desc()).limit(limit)
    return [ActionItemView.model_validate(r) for r in session.scalars(query).all()]
