"""
classifier.py -- One classification run for one voice memo.

Responsibility:
- Refuse to start before the transcript is final (TranscriptionNotReady)
- Snapshot the user's context once, render the prompt, call the model
- Persist the Classification, its ActionItems (tier rule) and the memo update
  in one transaction; overwrite placeholder titles
- Fold discoveries back into the Context Store (failures logged, not fatal)
- Always leave classification_status at completed or failed
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from memo_ingest.actions import build_action_row
from memo_ingest.context_store import load_active_context, merge_discoveries
from memo_ingest.errors import NotFound, SchemaViolation, TranscriptionNotReady
from memo_ingest.extractor import (
    REQUEST_TIMEOUT_SECONDS,
    Completion,
    call_model,
    log_rejected_response,
    parse_classifier_output,
)
from memo_ingest.models import (
    ActionItemView,
    ClassificationRun,
    ClassificationView,
    ClassifierOutput,
    VoiceMemoView,
)
from memo_ingest.prompt_builder import assemble_prompt
from memo_ingest.store import ActionItem, Classification, VoiceMemo, new_id

logger = logging.getLogger(__name__)

PLACEHOLDER_TITLE = re.compile(
    r"^(untitled(\s+memo)?|new\s+(voice\s+)?(memo|recording)|voice\s+(memo|note|recording)|recording|audio)"
    r"(\s*[#(]?\s*\d[\d\s/:.,\-]*\)?\s*(am|pm)?)?"
    r"(\.(webm|m4a|mp3|wav|ogg|mp4))?$",
    re.IGNORECASE,
)


def is_placeholder_title(title: Optional[str]) -> bool:
    """True for empty titles and the defaults recorders and uploads assign."""
    if title is None or not title.strip():
        return True
    return PLACEHOLDER_TITLE.match(title.strip()) is not None


def _load_memo(session: Session, memo_id: str, user_id: str) -> VoiceMemo:
    memo = session.get(VoiceMemo, memo_id)
    if memo is None or memo.user_id != user_id:
        raise NotFound(f"Voice memo {memo_id} not found")
    return memo


def _mark_failed(session: Session, memo_id: str, exc: BaseException) -> None:
    try:
        memo = session.get(VoiceMemo, memo_id)
        if memo is not None:
            memo.classification_status = "failed"
            session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Could not mark memo %s as failed", memo_id)
    logger.error("Classification failed for memo %s: %s: %s", memo_id, type(exc).__name__, exc)


def _persist(
    session: Session,
    memo: VoiceMemo,
    output: ClassifierOutput,
    model: str,
    duration_ms: int,
) -> tuple[Classification, list[ActionItem]]:
    classification = Classification(
        id=new_id(),
        voice_memo_id=memo.id,
        user_id=memo.user_id,
        entity=output.entity,
        activity=output.activity,
        action_type=output.action_type,
        confidence_scores=output.confidence.model_dump(),
        people=[p.model_dump() for p in output.people],
        prophetic_words=[w.model_dump() for w in output.prophetic_words],
        has_prophetic_content=output.has_prophetic_content,
        discoveries=[d.model_dump() for d in output.discoveries],
        action_items=[a.model_dump() for a in output.action_items],
        brain_summary=output.summary,
        title_suggestion=output.title_suggestion,
        processing_model=model,
        processing_duration_ms=duration_ms,
    )
    session.add(classification)
    # No relationship() links the mappers; the parent row must exist before its actions.
    session.flush()

    actions = [
        build_action_row(item, memo.user_id, classification.id, memo.id)
        for item in output.action_items
    ]
    session.add_all(actions)

    memo.classification_status = "completed"
    memo.classification_id = classification.id
    suggestion = (output.title_suggestion or "").strip()
    if suggestion and is_placeholder_title(memo.title):
        logger.info("Replacing placeholder title %r with %r", memo.title, suggestion)
        memo.title = suggestion

    session.commit()
    return classification, actions


async def classify_memo(
    session: Session,
    memo_id: str,
    user_id: str,
    completion: Completion,
    entities: Optional[Mapping[str, Any]] = None,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> ClassificationRun:
    """
    Classify one memo and persist everything the run produced.

    Raises NotFound or TranscriptionNotReady before any status change.
    Once the run has started, ModelCallFailure, SchemaViolation and storage
    errors mark the memo failed and propagate.
    """
    memo = _load_memo(session, memo_id, user_id)
    if memo.processing_status != "completed" or not (memo.transcript or "").strip():
        raise TranscriptionNotReady(
            f"Memo {memo_id} is not transcribed yet (processing_status={memo.processing_status})"
        )

    memo.classification_status = "processing"
    session.commit()
    logger.info("Classifying memo %s for user %s", memo_id, user_id)

    try:
        context = load_active_context(session, user_id)
        system, user = assemble_prompt(context, memo.transcript, memo.title, entities)

        started = time.monotonic()
        raw = await call_model(completion, system, user, timeout=timeout)
        output = parse_classifier_output(raw, entities)
        duration_ms = int((time.monotonic() - started) * 1000)

        model = getattr(completion, "model", "unknown")
        classification, actions = _persist(session, memo, output, model, duration_ms)
    except BaseException as exc:
        if isinstance(exc, SchemaViolation):
            log_rejected_response(exc)
        session.rollback()
        _mark_failed(session, memo_id, exc)
        raise

    logger.info(
        "Memo %s classified: entity=%s activity=%s action=%s, %d actions (%d pending), %dms",
        memo_id, output.entity, output.activity, output.action_type, len(actions),
        sum(1 for a in actions if a.status == "pending"), duration_ms,
    )

    added = merge_discoveries(session, user_id, output.discoveries)
    if output.discoveries:
        logger.info("Discoveries: %d reported, %d new context items", len(output.discoveries), added)

    return ClassificationRun(
        memo=VoiceMemoView.model_validate(memo),
        classification=ClassificationView.model_validate(classification),
        actions=[ActionItemView.model_validate(a) for a in actions],
        discoveries_added=added,
    )
