"""
prompt_builder.py -- Layered system-prompt assembly for memo classification.

Layer 1 (Taxonomy): the three closed classification dimensions
Layer 2 (Detection rules): prophetic words, discovery mode, action tiers
Layer 3 (Context): what the user's knowledge base already knows
Layer 4 (Contract): the exact JSON the model must return

Everything here is a pure function of the context snapshot and the fixed
taxonomy text: the same snapshot always renders the same bytes.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping, Optional

from memo_ingest.models import ContextItemView
from memo_ingest.taxonomy import ACTION_TYPES, ACTIVITIES, CONTEXT_TYPES, ENTITIES, TIERS

logger = logging.getLogger(__name__)

CONTEXT_SECTION_TITLES: dict[str, str] = {
    "entity": "KNOWN ORGANIZATIONS",
    "person": "KNOWN PEOPLE",
    "project": "KNOWN PROJECTS",
    "keyword": "KNOWN KEYWORDS",
}


def _dimension_lines(title: str, values: Mapping[str, str]) -> list[str]:
    lines = [f"{title} (choose exactly one):"]
    for name, definition in values.items():
        lines.append(f"- {name}: {definition}")
    return lines


def build_taxonomy_layer(entities: Optional[Mapping[str, str]] = None) -> str:
    """Layer 1 -- the three classification dimensions and their closed value sets."""
    lines: list[str] = [
        "You classify voice memos recorded by a busy executive and pastor.",
        "Every memo is placed on three dimensions.",
        "",
    ]
    lines += _dimension_lines("ENTITY", entities or ENTITIES)
    lines.append("")
    lines += _dimension_lines("ACTIVITY", ACTIVITIES)
    lines.append("")
    lines += _dimension_lines("ACTION TYPE", ACTION_TYPES)
    return "\n".join(lines)


def build_prophetic_layer() -> str:
    """Layer 2a -- how to recognise a prophetic word."""
    parts = [
        "PROPHETIC WORD DETECTION:",
        "",
        "A prophetic word is a directed message the speaker believes comes from God for a specific person.",
        "Signals:",
        "1. Phrases like 'I felt God say', 'the Lord showed me', 'I sense', 'I had a word for', 'I saw a picture of'.",
        "2. A named recipient: 'tell Maria', 'for David', 'I need to share this with the team'.",
        "3. Future-facing encouragement, direction or warning addressed to that recipient.",
        "For each prophetic word record the recipient, the content as close to the spoken words as possible,",
        "and a timestamp label if the memo gives one (otherwise null).",
        "Do not treat general prayer, worship or teaching as a prophetic word unless it is addressed to someone.",
    ]
    return "\n".join(parts)


def build_discovery_layer() -> str:
    """Layer 2b -- discovery mode: report what the knowledge base does not know yet."""
    parts = [
        "DISCOVERY MODE:",
        "",
        "Compare every person, organization and project mentioned in the memo with the known context below.",
        "1. A mention that matches a known name or alias is known: set is_known to true for people.",
        "2. A mention that matches nothing is a discovery: add it to discoveries with type person, entity or project,",
        "   the name as spoken, and one sentence of inferred context (who or what it is, and how it relates).",
        "3. Never report a known name as a discovery. Never invent names that were not spoken.",
    ]
    return "\n".join(parts)


def build_tier_layer() -> str:
    """Layer 2c -- action tiers decide what may run without a human."""
    lines = ["ACTION ITEM TIERS:", ""]
    for tier, info in TIERS.items():
        lines.append(f"- {tier} ({info['label']}): {info['description']}")
    lines += [
        "",
        "Any action that reaches a person outside the speaker's own tools is red.",
        "Delivering a prophetic word to its recipient is always a red Deliver action.",
        "When unsure between two tiers, choose the more restrictive one.",
    ]
    return "\n".join(lines)


def _render_item(item: ContextItemView) -> str:
    line = f"- {item.name}"
    if item.aliases:
        line += f" (aliases: {', '.join(item.aliases)})"
    if item.metadata:
        pairs = "; ".join(f"{k}: {_render_value(item.metadata[k])}" for k in sorted(item.metadata))
        line += f" [{pairs}]"
    return line


def _render_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, sort_keys=True, ensure_ascii=False)


def build_context_layer(context: Iterable[ContextItemView]) -> str:
    """
    Layer 3 -- one section per context type that has at least one item.

    Items are sorted by name and metadata by key, so the rendering depends
    only on the contents of the snapshot, not on its order.
    """
    grouped: dict[str, list[ContextItemView]] = {t: [] for t in CONTEXT_TYPES}
    for item in context:
        if item.is_active and item.context_type in grouped:
            grouped[item.context_type].append(item)

    sections: list[str] = []
    for context_type in CONTEXT_TYPES:
        items = sorted(grouped[context_type], key=lambda i: (i.name, i.id))
        if not items:
            continue
        lines = [f"{CONTEXT_SECTION_TITLES[context_type]}:"]
        lines += [_render_item(i) for i in items]
        sections.append("\n".join(lines))

    if not sections:
        return ""
    return "\n\n".join(sections)


def build_output_contract_layer(entities: Optional[Mapping[str, str]] = None) -> str:
    """Layer 4 -- every required JSON field and its allowed values."""
    entity_values = " | ".join(f'"{e}"' for e in (entities or ENTITIES))
    activity_values = " | ".join(f'"{a}"' for a in ACTIVITIES)
    action_values = " | ".join(f'"{a}"' for a in ACTION_TYPES)
    tier_values = " | ".join(f'"{t}"' for t in TIERS)
    parts = [
        "OUTPUT CONTRACT:",
        "",
        "Return one JSON object with exactly these keys. Every key is required.",
        "{",
        f'  "entity": {entity_values},',
        f'  "activity": {activity_values},',
        f'  "action_type": {action_values},',
        '  "confidence": {"entity": 0.0-1.0, "activity": 0.0-1.0, "action": 0.0-1.0},',
        '  "summary": "two or three sentences",',
        '  "people": [{"name": string, "entity_link": string or null, "role": string or null, "is_known": true or false}],',
        '  "prophetic_words": [{"recipient": string, "content": string, "timestamp_label": string or null}],',
        '  "has_prophetic_content": true or false,',
        '  "discoveries": [{"type": "person" | "entity" | "project", "name": string, "inferred_context": string}],',
        f'  "action_items": [{{"tier": {tier_values}, "action_type": {action_values}, "title": string,',
        '                     "description": string, "related_entity": string, "related_people": [string],',
        '                     "delivery_payload": {}}],',
        '  "title_suggestion": string or null',
        "}",
        "",
        "Use empty arrays when there is nothing to report. Use only the listed values for entity, activity,",
        "action_type, tier and discovery type.",
        "Respond with ONLY this JSON object. No prose before or after it, no markdown, no code fences.",
    ]
    return "\n".join(parts)


def build_system_prompt(
    context: Iterable[ContextItemView],
    entities: Optional[Mapping[str, str]] = None,
) -> str:
    """Render the full instruction document for one context snapshot."""
    layers = [
        build_taxonomy_layer(entities),
        build_prophetic_layer(),
        build_discovery_layer(),
        build_tier_layer(),
    ]
    context_layer = build_context_layer(context)
    if context_layer:
        layers.append(context_layer)
    layers.append(build_output_contract_layer(entities))
    return "\n\n".join(layers)


def build_user_message(transcript: str, title: Optional[str] = None) -> str:
    """The single user turn: the optional title, then the transcript."""
    parts: list[str] = []
    if title and title.strip():
        parts.append(f"Title: {title.strip()}")
    parts.append("Transcript:")
    parts.append(transcript.strip())
    return "\n".join(parts)


def assemble_prompt(
    context: list[ContextItemView],
    transcript: str,
    title: Optional[str] = None,
    entities: Optional[Mapping[str, str]] = None,
) -> tuple[str, str]:
    """Return (system, user) for one classification call."""
    system = build_system_prompt(context, entities)
    user = build_user_message(transcript, title)
    logger.debug(
        "Assembled prompt: %d context items, system_len=%d, user_len=%d",
        len(context), len(system), len(user),
    )
    return system, user
