"""Unit tests for the per-user Context Store."""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from conftest import OTHER_USER, USER
from memo_ingest.context_store import (
    add_context_item,
    deactivate_context_item,
    load_active_context,
    merge_discoveries,
    upsert_discovery,
)
from memo_ingest.errors import NotFound
from memo_ingest.models import Discovery
from memo_ingest.store import ContextItem


def _discovery(name: str, inferred: str, kind: str = "person") -> Discovery:
    return Discovery(type=kind, name=name, inferred_context=inferred)


def test_discovery_merge_is_idempotent(session: Session) -> None:
    """Ensure the same discovery twice yields one row."""
    assert upsert_discovery(session, USER, _discovery("Maria", "Worship leader")) is True
    assert upsert_discovery(session, USER, _discovery("Maria", "Worship leader")) is False

    rows = session.scalars(select(ContextItem).where(ContextItem.user_id == USER)).all()
    assert len(rows) == 1


def test_first_inferred_context_wins(session: Session) -> None:
    upsert_discovery(session, USER, _discovery("Maria", "Worship leader"))
    upsert_discovery(session, USER, _discovery("Maria", "Someone else entirely"))

    [item] = load_active_context(session, USER)
    assert item.metadata == {"inferred_context": "Worship leader", "source": "discovery"}


def test_discovery_never_overwrites_curated_item(session: Session) -> None:
    """Ensure a user-entered person keeps its metadata when rediscovered."""
    add_context_item(session, USER, "person", "David", metadata={"email": "david@example.org"})

    added = merge_discoveries(session, USER, [_discovery("David", "Board member"), _discovery("Ruth", "Donor")])

    assert added == 1
    items = {i.name: i for i in load_active_context(session, USER)}
    assert items["David"].metadata == {"email": "david@example.org"}
    assert items["Ruth"].metadata["source"] == "discovery"


def test_same_name_with_different_type_is_a_new_item(session: Session) -> None:
    upsert_discovery(session, USER, _discovery("Harvest", "A person", kind="person"))
    assert upsert_discovery(session, USER, _discovery("Harvest", "A project", kind="project")) is True


def test_discoveries_are_scoped_per_user(session: Session) -> None:
    upsert_discovery(session, USER, _discovery("Maria", "Worship leader"))
    assert upsert_discovery(session, OTHER_USER, _discovery("Maria", "Neighbor")) is True
    assert len(load_active_context(session, OTHER_USER)) == 1


def test_explicit_add_overrides_discovered_item(session: Session) -> None:
    """Ensure a human edit replaces what discovery inferred."""
    upsert_discovery(session, USER, _discovery("Maria", "Worship leader"))

    item = add_context_item(session, USER, "person", "Maria", aliases=["Mari"], metadata={"email": "m@x.org"})

    assert item.aliases == ["Mari"]
    assert item.metadata == {"email": "m@x.org"}
    assert len(load_active_context(session, USER)) == 1


def test_add_rejects_bad_input(session: Session) -> None:
    with pytest.raises(ValueError):
        add_context_item(session, USER, "place", "Jerusalem")
    with pytest.raises(ValueError):
        add_context_item(session, USER, "person", "   ")


def test_deactivated_items_leave_the_snapshot(session: Session) -> None:
    item = add_context_item(session, USER, "project", "Youth Retreat")

    deactivated = deactivate_context_item(session, USER, item.id)

    assert deactivated.is_active is False
    assert load_active_context(session, USER) == []
    assert session.get(ContextItem, item.id) is not None


def test_deactivated_item_is_not_rediscovered(session: Session) -> None:
    """Ensure discovery cannot resurrect an item the user switched off."""
    item = add_context_item(session, USER, "person", "Maria")
    deactivate_context_item(session, USER, item.id)

    assert upsert_discovery(session, USER, _discovery("Maria", "Worship leader")) is False
    assert load_active_context(session, USER) == []


def test_readding_reactivates(session: Session) -> None:
    item = add_context_item(session, USER, "person", "Maria")
    deactivate_context_item(session, USER, item.id)

    add_context_item(session, USER, "person", "Maria")

    assert [i.name for i in load_active_context(session, USER)] == ["Maria"]


def test_deactivate_other_users_item_is_not_found(session: Session) -> None:
    item = add_context_item(session, USER, "person", "Maria")
    with pytest.raises(NotFound):
        deactivate_context_item(session, OTHER_USER, item.id)


def test_snapshot_is_sorted_by_type_then_name(session: Session) -> None:
    add_context_item(session, USER, "person", "Zed")
    add_context_item(session, USER, "entity", "Kingdom Builders")
    add_context_item(session, USER, "person", "Anna")

    names = [(i.context_type, i.name) for i in load_active_context(session, USER)]
    assert names == [("entity", "Kingdom Builders"), ("person", "Anna"), ("person", "Zed")]
