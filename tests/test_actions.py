"""Unit tests for the tiered-autonomy state machine."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from conftest import OTHER_USER, USER
from memo_ingest.actions import ALLOWED_TRANSITIONS, build_action_row, initial_status, list_actions, transition
from memo_ingest.errors import InvalidTransition, NotFound, ValidationError
from memo_ingest.models import ExtractedActionItem
from memo_ingest.store import ActionItem
from memo_ingest.taxonomy import ACTION_STATUSES


def _extracted(tier: str, title: str = "Do the thing", action_type: str = "Deliver") -> ExtractedActionItem:
    return ExtractedActionItem(
        tier=tier,
        action_type=action_type,
        title=title,
        description="",
        related_entity="TPC Ministries",
        related_people=[],
        delivery_payload={},
    )


def _add(session: Session, tier: str, title: str = "Do the thing", user_id: str = USER, **overrides) -> ActionItem:
    row = build_action_row(_extracted(tier, title), user_id, None, None)
    for key, value in overrides.items():
        setattr(row, key, value)
    session.add(row)
    session.commit()
    return row


def test_transition_table_covers_every_status() -> None:
    assert set(ALLOWED_TRANSITIONS) == set(ACTION_STATUSES)
    for targets in ALLOWED_TRANSITIONS.values():
        assert targets <= set(ACTION_STATUSES)


@pytest.mark.parametrize(("tier", "expected"), [("red", "pending"), ("yellow", "auto_completed"), ("green", "auto_completed")])
def test_initial_status_follows_tier(tier: str, expected: str) -> None:
    assert initial_status(tier) == expected


def test_approve_then_complete(session: Session) -> None:
    row = _add(session, "red")

    approved = transition(session, row.id, "approved", USER)
    assert approved.status == "approved"
    assert approved.approved_at is not None

    completed = transition(session, row.id, "completed", USER)
    assert completed.status == "completed"
    assert completed.completed_at is not None


def test_reject_requires_reason(session: Session) -> None:
    """Ensure a reject without a reason is refused and the action stays pending."""
    row = _add(session, "red")

    with pytest.raises(ValidationError):
        transition(session, row.id, "rejected", USER)
    with pytest.raises(ValidationError):
        transition(session, row.id, "rejected", USER, rejection_reason="   ")
    assert session.get(ActionItem, row.id).status == "pending"

    rejected = transition(session, row.id, "rejected", USER, rejection_reason="Not the right time")
    assert rejected.status == "rejected"
    assert rejected.rejection_reason == "Not the right time"


@pytest.mark.parametrize(
    ("start", "target"),
    [
        ("pending", "completed"),
        ("pending", "auto_completed"),
        ("approved", "rejected"),
        ("approved", "pending"),
        ("rejected", "approved"),
        ("completed", "approved"),
        ("auto_completed", "approved"),
        ("auto_completed", "completed"),
    ],
)
def test_moves_outside_the_table_are_refused(session: Session, start: str, target: str) -> None:
    row = _add(session, "red", status=start)

    with pytest.raises(InvalidTransition) as excinfo:
        transition(session, row.id, target, USER, rejection_reason="because")

    assert (excinfo.value.current, excinfo.value.target) == (start, target)
    assert session.get(ActionItem, row.id).status == start


def test_transition_is_checked_before_reason(session: Session) -> None:
    """Ensure rejecting a terminal action reports the transition, not the missing reason."""
    row = _add(session, "green")
    with pytest.raises(InvalidTransition):
        transition(session, row.id, "rejected", USER)


def test_unknown_or_foreign_action_is_not_found(session: Session) -> None:
    row = _add(session, "red")
    with pytest.raises(NotFound):
        transition(session, "no-such-id", "approved", USER)
    with pytest.raises(NotFound):
        transition(session, row.id, "approved", OTHER_USER)


def test_list_orders_by_priority_then_newest(session: Session) -> None:
    base = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    _add(session, "green", "old green", created_at=base)
    _add(session, "red", "old red", created_at=base)
    _add(session, "red", "new red", created_at=base + timedelta(hours=1))
    _add(session, "yellow", "yellow", created_at=base + timedelta(hours=2))
    _add(session, "red", "someone else's", user_id=OTHER_USER)

    titles = [a.title for a in list_actions(session, USER)]

    assert titles == ["new red", "old red", "yellow", "old green"]


def test_list_filters_by_tier_and_status(session: Session) -> None:
    row = _add(session, "red", "waiting")
    _add(session, "red", "still pending")
    _add(session, "yellow", "auto")
    transition(session, row.id, "approved", USER)

    assert [a.title for a in list_actions(session, USER, tier="red", status="approved")] == ["waiting"]
    assert [a.title for a in list_actions(session, USER, status="auto_completed")] == ["auto"]
    assert len(list_actions(session, USER, limit=1)) == 1


def test_list_rejects_unknown_status(session: Session) -> None:
    with pytest.raises(ValidationError):
        list_actions(session, USER, status="done")
