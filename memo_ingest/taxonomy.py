"""
taxonomy.py -- Closed value sets for voice-memo classification.

Three classification dimensions (entity, activity, action type), the action
tiers, and the status vocabularies for memos and action items. Each dimension
value carries a one-line definition that the prompt builder renders verbatim.

The entity dimension is per deployment: VOICE_INTEL_ENTITIES (comma separated)
replaces the default set.
"""

import logging
import os
from typing import Any

logger = logging.getLogger(__name__)

# -- Entity dimension ---------------------------------------------------------

DEFAULT_ENTITIES: dict[str, str] = {
    "IHA": "Healthcare operations and the organization's core business.",
    "Uplift Communities": "Community development, housing and neighborhood programs.",
    "DeepFutures Capital": "Investment, fund management and deal flow.",
    "TPC Ministries": "Church, ministry leadership and spiritual work.",
    "Perpetual Core": "The software product, its customers and its team.",
    "Personal/Family": "Personal life, health, family and friends.",
}


def _entities_from_env() -> dict[str, str]:
    raw = os.getenv("VOICE_INTEL_ENTITIES", "")
    names = [n.strip() for n in raw.split(",") if n.strip()]
    if not names:
        return dict(DEFAULT_ENTITIES)
    logger.info("Using %d entities from VOICE_INTEL_ENTITIES", len(names))
    return {n: DEFAULT_ENTITIES.get(n, f"Work related to {n}.") for n in names}


ENTITIES: dict[str, str] = _entities_from_env()

# -- Activity dimension -------------------------------------------------------

ACTIVITIES: dict[str, str] = {
    "Revenue": "Sales, pricing, billing and anything that brings money in.",
    "Fundraising": "Investors, donors, grants and capital raising.",
    "Operations": "Running the organization: hiring, process, logistics.",
    "Relationships": "Building or maintaining a relationship with a person.",
    "Strategy": "Direction, planning and long-range decisions.",
    "Ministry": "Prayer, prophetic words, preaching and pastoral care.",
    "Content": "Writing, teaching, video, social posts and publishing.",
}

# -- Action-type dimension ----------------------------------------------------

ACTION_TYPES: dict[str, str] = {
    "Deliver": "Send or hand something to someone outside (message, word, file, payment).",
    "Decide": "A decision has to be made by the speaker.",
    "Delegate": "Someone else should take the work on.",
    "Document": "Capture the information for later reference.",
    "Develop": "Build, research or grow an idea over time.",
}

# -- Action tiers ---------------------------------------------------------------

TIERS: dict[str, dict[str, Any]] = {
    "red": {
        "label": "Requires approval",
        "description": (
            "External or irreversible: sending a message, delivering a prophetic word, "
            "making a payment, committing on someone's behalf."
        ),
        "priority": 3,
        "auto_executes": False,
    },
    "yellow": {
        "label": "Auto-executes",
        "description": "Internal and reversible: creating a task, a draft, a reminder, a note.",
        "priority": 2,
        "auto_executes": True,
    },
    "green": {
        "label": "Auto-executes",
        "description": "Pure information: logging, tagging, updating the knowledge base.",
        "priority": 1,
        "auto_executes": True,
    },
}

CONTEXT_TYPES: tuple[str, ...] = ("entity", "person", "project", "keyword")
DISCOVERY_TYPES: tuple[str, ...] = ("person", "entity", "project")

PROCESSING_STATUSES: tuple[str, ...] = ("pending", "processing", "completed", "failed")
CLASSIFICATION_STATUSES: tuple[str, ...] = ("not_started", "processing", "completed", "failed")
ACTION_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected", "completed", "auto_completed")


def tier_priority(tier: str) -> int:
    """Priority derived from the tier; higher sorts first."""
    return TIERS[tier]["priority"]


def is_auto_executing(tier: str) -> bool:
    return TIERS[tier]["auto_executes"]


def describe() -> dict[str, Any]:
    """Serializable view of the whole taxonomy, for the /taxonomy endpoint."""
    return {
        "entities": [{"id": k, "description": v} for k, v in ENTITIES.items()],
        "activities": [{"id": k, "description": v} for k, v in ACTIVITIES.items()],
        "actionTypes": [{"id": k, "description": v} for k, v in ACTION_TYPES.items()],
        "tiers": [
            {"id": k, "label": v["label"], "description": v["description"], "priority": v["priority"]}
            for k, v in TIERS.items()
        ],
        "contextTypes": list(CONTEXT_TYPES),
    }
