"""
executor.py -- Carry out an approved action, then mark it completed.

Responsibility:
- Route an approved action to a delivery handler:
    prophetic content        -> prophecy_delivery (one message per recipient)
    action_type == Delegate  -> delegation
    action_type == Deliver   -> meeting_follow_up
    anything else            -> generic (no external delivery)
- Resolve recipient addresses from the user's person context (metadata.email)
- Record the outcome under delivery_payload.execution_result and move the
  action approved -> completed

Only approved actions can be executed; the approval gate lives in actions.py.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from memo_ingest.actions import get_owned_action
from memo_ingest.errors import DeliveryFailure, InvalidTransition
from memo_ingest.models import ActionItemView
from memo_ingest.store import ActionItem, Classification, ContextItem, VoiceMemo, utcnow

logger = logging.getLogger(__name__)

N8N_WEBHOOK_URL: str = os.getenv("N8N_WEBHOOK_URL", "")
SENDER_NAME: str = os.getenv("VOICE_INTEL_SENDER_NAME", "Your colleague")
HTTP_TIMEOUT_SECONDS: float = 30.0

_PROPHETIC_HINT = re.compile(r"prophec|prophetic", re.IGNORECASE)


class ExecutionResult(BaseModel):
    success: bool
    handler: str
    details: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class Deliverer(Protocol):
    async def send(self, to: str, subject: str, body: str, meta: dict[str, Any]) -> None: ...


class WebhookDeliverer:
    """Hands outbound messages to an n8n workflow that does the actual sending."""

    def __init__(
        self,
        url: str = N8N_WEBHOOK_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url:
            raise ValueError("N8N_WEBHOOK_URL is required for WebhookDeliverer")
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def send(self, to: str, subject: str, body: str, meta: dict[str, Any]) -> None:
        payload = {"to": to, "subject": subject, "body": body, "meta": meta}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.post(self.url, json=payload)
                resp.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise DeliveryFailure(f"Webhook returned {exc.response.status_code} for {to}") from exc
            except httpx.RequestError as exc:
                raise DeliveryFailure(f"Failed to reach webhook at {self.url}: {exc}") from exc
        logger.info("Delivered '%s' to %s", subject, to)


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

def build_prophecy_message(recipient: str, word: str, spoken_on: str, memo_title: Optional[str]) -> tuple[str, str]:
    subject = f"A word for you, {recipient}"
    lines = [
        f"{recipient},",
        "",
        f"{SENDER_NAME} shared a word for you on {spoken_on}:",
        "",
        f'"{word}"',
    ]
    if memo_title:
        lines += ["", f"(From the voice memo: {memo_title})"]
    return subject, "\n".join(lines)


def build_delegation_message(
    recipient: str,
    title: str,
    description: str,
    context: Optional[str],
    entity: Optional[str],
    due_date: Optional[str],
) -> tuple[str, str]:
    subject = f"New task from {SENDER_NAME}: {title}"
    lines = [f"Hi {recipient},", "", f"{SENDER_NAME} would like you to take this on:", "", title]
    if description:
        lines.append(description)
    if entity:
        lines.append(f"Organization: {entity}")
    if due_date:
        lines.append(f"Due: {due_date}")
    if context:
        lines += ["", "Background:", context]
    return subject, "\n".join(lines)


def build_follow_up_message(
    recipient: str,
    summary: str,
    action_items: list[dict[str, Any]],
    attendees: list[str],
    meeting_date: str,
) -> tuple[str, str]:
    subject = f"Follow-up from {meeting_date}"
    lines = [f"Hi {recipient},", "", summary, ""]
    if action_items:
        lines.append("Action items:")
        for item in action_items:
            owner = f" ({item['assignee']})" if item.get("assignee") else ""
            lines.append(f"- {item['title']}{owner}")
        lines.append("")
    lines.append(f"Attendees: {', '.join(attendees)}")
    return subject, "\n".join(lines)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def find_contact_email(session: Session, user_id: str, name: str) -> tuple[str, Optional[str]]:
    """Look a person up in the user's context; returns (display name, email or None)."""
    needle = name.strip().lower()
    rows = session.scalars(
        select(ContextItem)
        .where(
            ContextItem.user_id == user_id,
            ContextItem.context_type == "person",
            ContextItem.is_active.is_(True),
            func.lower(ContextItem.name).contains(needle, autoescape=True),
        )
        .order_by(ContextItem.name)
    ).all()
    exact = [r for r in rows if r.name.lower() == needle]
    row = (exact or rows or [None])[0]
    if row is None:
        return name, None
    email = (row.metadata_ or {}).get("email")
    return row.name, email if isinstance(email, str) and email else None


def _memo_date(memo: Optional[VoiceMemo]) -> str:
    when = memo.created_at if memo is not None and memo.created_at else utcnow()
    return when.strftime("%B %d, %Y")


async def _send_each(
    session: Session,
    user_id: str,
    handler: str,
    recipients: list[tuple[str, Any]],
    render,
    deliverer: Deliverer,
    meta: dict[str, Any],
) -> ExecutionResult:
    sent = 0
    errors: list[str] = []
    for name, item in recipients:
        display, email = find_contact_email(session, user_id, name)
        if not email:
            errors.append(f"No email found for: {name}")
            continue
        subject, body = render(display, item)
        try:
            await deliverer.send(email, subject, body, meta)
            sent += 1
        except DeliveryFailure as exc:
            errors.append(f"Failed to send to {name}: {exc}")
    details: dict[str, Any] = {"messagesSent": sent, "totalRecipients": len(recipients)}
    if errors:
        details["errors"] = errors
    return ExecutionResult(success=not errors, handler=handler, details=details)


async def handle_prophecy_delivery(
    session: Session,
    action: ActionItem,
    classification: Optional[Classification],
    memo: Optional[VoiceMemo],
    deliverer: Deliverer,
) -> ExecutionResult:
    words = [w for w in (classification.prophetic_words if classification else []) if w.get("recipient")]
    if not words:
        return ExecutionResult(
            success=True, handler="prophecy_delivery",
            details={"messagesSent": 0, "note": "No prophetic words found in classification"},
        )
    spoken_on = _memo_date(memo)
    memo_title = memo.title if memo else None
    return await _send_each(
        session, action.user_id, "prophecy_delivery",
        [(w["recipient"], w) for w in words],
        lambda display, w: build_prophecy_message(display, w["content"], spoken_on, memo_title),
        deliverer, {"action_id": action.id, "handler": "prophecy_delivery"},
    )


async def handle_delegation(
    session: Session,
    action: ActionItem,
    classification: Optional[Classification],
    memo: Optional[VoiceMemo],
    deliverer: Deliverer,
) -> ExecutionResult:
    people = list(action.related_people or [])
    if not people:
        return ExecutionResult(
            success=True, handler="delegation",
            details={"messagesSent": 0, "note": "No related people to delegate to"},
        )
    context = classification.brain_summary if classification else None
    due_date = (action.delivery_payload or {}).get("due_date")
    return await _send_each(
        session, action.user_id, "delegation",
        [(p, None) for p in people],
        lambda display, _: build_delegation_message(
            display, action.title, action.description, context, action.related_entity or None, due_date,
        ),
        deliverer, {"action_id": action.id, "handler": "delegation"},
    )


async def handle_meeting_follow_up(
    session: Session,
    action: ActionItem,
    classification: Optional[Classification],
    memo: Optional[VoiceMemo],
    deliverer: Deliverer,
) -> ExecutionResult:
    people = list(action.related_people or [])
    if not people:
        return ExecutionResult(
            success=True, handler="meeting_follow_up",
            details={"messagesSent": 0, "note": "No related people for follow-up"},
        )
    items = [
        {"title": ai.get("title", ""), "assignee": (ai.get("related_people") or [None])[0]}
        for ai in (classification.action_items if classification else [])
    ]
    summary = (classification.brain_summary if classification else "") or action.description
    meeting_date = _memo_date(memo)
    return await _send_each(
        session, action.user_id, "meeting_follow_up",
        [(p, None) for p in people],
        lambda display, _: build_follow_up_message(display, summary, items, people, meeting_date),
        deliverer, {"action_id": action.id, "handler": "meeting_follow_up"},
    )


def handle_generic(action: ActionItem) -> ExecutionResult:
    logger.info("Generic delivery for action %s: %s", action.id, action.title)
    return ExecutionResult(
        success=True, handler="generic",
        details={"note": "Informational action, no external delivery required", "actionType": action.action_type},
    )


def is_prophetic(action: ActionItem, classification: Optional[Classification]) -> bool:
    if classification is not None and classification.has_prophetic_content:
        return True
    return bool(action.description and _PROPHETIC_HINT.search(action.description))


async def execute_action(
    session: Session,
    action_id: str,
    actor: str,
    deliverer: Deliverer,
) -> tuple[ActionItemView, ExecutionResult]:
    """
    Execute one approved action owned by actor and mark it completed.

    The action is claimed (approved -> completed in one conditional UPDATE)
    before anything is sent, so concurrent callers deliver at most once.
    """
    action = get_owned_action(session, action_id, actor)
    if action.status != "approved":
        raise InvalidTransition(action.status, "completed")
    claim_action(session, action)

    classification = session.get(Classification, action.classification_id) if action.classification_id else None
    memo = session.get(VoiceMemo, action.voice_memo_id) if action.voice_memo_id else None

    try:
        if is_prophetic(action, classification):
            result = await handle_prophecy_delivery(session, action, classification, memo, deliverer)
        elif action.action_type == "Delegate":
            result = await handle_delegation(session, action, classification, memo, deliverer)
        elif action.action_type == "Deliver":
            result = await handle_meeting_follow_up(session, action, classification, memo, deliverer)
        else:
            result = handle_generic(action)
    except Exception as exc:
        _record_result(session, action, ExecutionResult(success=False, handler="error", error=str(exc)))
        logger.exception("Action %s claimed but execution failed", action_id)
        raise

    _record_result(session, action, result)
    logger.info("Action %s executed via %s (success=%s)", action_id, result.handler, result.success)
    return ActionItemView.model_validate(action), result


def claim_action(session: Session, action: ActionItem) -> None:
    """Move an approved action to completed, or raise if someone else already did."""
    claimed = session.execute(
        update(ActionItem)
        .where(ActionItem.id == action.id, ActionItem.status == "approved")
        .values(status="completed", completed_at=utcnow())
    ).rowcount
    session.commit()
    if claimed != 1:
        session.refresh(action)
        raise InvalidTransition(action.status, "completed")


def _record_result(session: Session, action: ActionItem, result: ExecutionResult) -> None:
    action.delivery_payload = {
        **(action.delivery_payload or {}),
        "execution_result": result.model_dump(),
        "executed_at": utcnow().isoformat(),
    }
    session.commit()
