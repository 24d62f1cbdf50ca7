"""Unit tests for system-prompt assembly."""

from __future__ import annotations

from memo_ingest.models import ContextItemView
from memo_ingest.prompt_builder import (
    assemble_prompt,
    build_context_layer,
    build_system_prompt,
    build_user_message,
)
from memo_ingest.taxonomy import ACTION_TYPES, ACTIVITIES, ENTITIES


def _item(item_id: str, context_type: str, name: str, **kwargs) -> ContextItemView:
    return ContextItemView(
        id=item_id,
        user_id="user-1",
        context_type=context_type,
        name=name,
        aliases=kwargs.get("aliases", []),
        metadata_=kwargs.get("metadata", {}),
        is_active=kwargs.get("is_active", True),
    )


SNAPSHOT = [
    _item("1", "person", "Maria", aliases=["Mari"], metadata={"role": "worship leader", "email": "m@x.org"}),
    _item("2", "entity", "Kingdom Builders"),
    _item("3", "person", "David"),
    _item("4", "project", "Youth Retreat", metadata={"year": 2026}),
]


def test_same_snapshot_renders_identical_prompt() -> None:
    """Ensure rendering is a pure function of the snapshot."""
    assert build_system_prompt(SNAPSHOT) == build_system_prompt(list(SNAPSHOT))


def test_snapshot_order_does_not_change_prompt() -> None:
    """Ensure items are rendered in a stable order regardless of input order."""
    assert build_system_prompt(SNAPSHOT) == build_system_prompt(list(reversed(SNAPSHOT)))


def test_prompt_lists_every_dimension_value() -> None:
    """Ensure the closed value sets are all present."""
    system = build_system_prompt([])
    for name in [*ENTITIES, *ACTIVITIES, *ACTION_TYPES]:
        assert name in system


def test_context_layer_groups_and_renders_items() -> None:
    """Ensure each type gets its section and items carry aliases and metadata."""
    layer = build_context_layer(SNAPSHOT)

    assert "KNOWN ORGANIZATIONS:\n- Kingdom Builders" in layer
    assert "KNOWN PEOPLE:\n- David\n- Maria (aliases: Mari) [email: m@x.org; role: worship leader]" in layer
    assert "KNOWN PROJECTS:\n- Youth Retreat [year: 2026]" in layer
    assert "KNOWN KEYWORDS" not in layer


def test_empty_context_omits_context_sections() -> None:
    """Ensure a user with no context gets no empty headings."""
    assert build_context_layer([]) == ""
    system = build_system_prompt([])
    assert "KNOWN PEOPLE" not in system
    assert "KNOWN ORGANIZATIONS" not in system


def test_inactive_items_are_not_rendered() -> None:
    layer = build_context_layer([_item("9", "person", "Ghost", is_active=False)])
    assert layer == ""


def test_prompt_ends_with_json_only_instruction() -> None:
    """Ensure the contract is the last thing the model reads."""
    system = build_system_prompt(SNAPSHOT)
    assert system.rstrip().endswith("No prose before or after it, no markdown, no code fences.")
    assert '"title_suggestion"' in system


def test_custom_entities_replace_defaults() -> None:
    system = build_system_prompt([], entities={"Acme": "The only company."})
    assert '"Acme"' in system
    assert "DeepFutures Capital" not in system


def test_user_message_carries_title_and_transcript() -> None:
    assert build_user_message("  hello world  ", "Board prep") == "Title: Board prep\nTranscript:\nhello world"
    assert build_user_message("hello", None) == "Transcript:\nhello"


def test_assemble_prompt_returns_system_and_user() -> None:
    system, user = assemble_prompt(SNAPSHOT, "transcript text", "A title")
    assert "KNOWN PEOPLE" in system
    assert user.endswith("transcript text")
