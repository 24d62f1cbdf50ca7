"""
models.py -- Pydantic models for the voice-memo intelligence pipeline.

Defines the classifier output contract (ClassifierOutput and its parts), the
read models returned by the store and the engine, and the run summary.
All data crossing component boundaries uses these models.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from memo_ingest.taxonomy import (
    ACTION_STATUSES,
    ACTION_TYPES,
    ACTIVITIES,
    CLASSIFICATION_STATUSES,
    CONTEXT_TYPES,
    DISCOVERY_TYPES,
    ENTITIES,
    PROCESSING_STATUSES,
    TIERS,
)

# Closed sets come from taxonomy.py; Literal[tuple] expands to one member per value.
ActivityName = Literal[tuple(ACTIVITIES)]  # type: ignore[valid-type]
ActionTypeName = Literal[tuple(ACTION_TYPES)]  # type: ignore[valid-type]
TierName = Literal[tuple(TIERS)]  # type: ignore[valid-type]
DiscoveryType = Literal[DISCOVERY_TYPES]  # type: ignore[valid-type]
ContextType = Literal[CONTEXT_TYPES]  # type: ignore[valid-type]
ActionStatus = Literal[ACTION_STATUSES]  # type: ignore[valid-type]
ProcessingStatus = Literal[PROCESSING_STATUSES]  # type: ignore[valid-type]
ClassificationStatus = Literal[CLASSIFICATION_STATUSES]  # type: ignore[valid-type]


# ---------------------------------------------------------------------------
# Classifier output contract -- what the model must emit
# ---------------------------------------------------------------------------

class _Contract(BaseModel):
    """Strict base: no type coercion, unknown keys ignored."""

    model_config = ConfigDict(strict=True, extra="ignore")


class ConfidenceScores(_Contract):
    entity: float = Field(ge=0.0, le=1.0)
    activity: float = Field(ge=0.0, le=1.0)
    action: float = Field(ge=0.0, le=1.0)


class ExtractedPerson(_Contract):
    name: str
    entity_link: Optional[str]
    role: Optional[str]
    is_known: bool


class PropheticWord(_Contract):
    recipient: str
    content: str
    timestamp_label: Optional[str]


class Discovery(_Contract):
    type: DiscoveryType
    name: str
    inferred_context: str


class ExtractedActionItem(_Contract):
    tier: TierName
    action_type: ActionTypeName
    title: str
    description: str
    related_entity: str
    related_people: list[str]
    delivery_payload: dict[str, Any]


class ClassifierOutput(_Contract):
    """
    The complete JSON object the model must return.

    Every key is required. The entity set is taken from the validation
    context ("entities") so one deployment can narrow or replace it.
    has_prophetic_content is recomputed from prophetic_words whatever the
    model claimed.
    """

    entity: str
    activity: ActivityName
    action_type: ActionTypeName
    confidence: ConfidenceScores
    summary: str
    people: list[ExtractedPerson]
    prophetic_words: list[PropheticWord]
    has_prophetic_content: bool
    discoveries: list[Discovery]
    action_items: list[ExtractedActionItem]
    title_suggestion: Optional[str]

    @field_validator("entity")
    @classmethod
    def _entity_in_taxonomy(cls, value: str, info: ValidationInfo) -> str:
        allowed = (info.context or {}).get("entities") or ENTITIES
        if value not in allowed:
            raise ValueError(f"entity {value!r} is not one of {sorted(allowed)}")
        return value

    @model_validator(mode="after")
    def _derive_prophetic_flag(self) -> "ClassifierOutput":
        self.has_prophetic_content = len(self.prophetic_words) > 0
        return self


# ---------------------------------------------------------------------------
# Read models -- built from store rows
# ---------------------------------------------------------------------------

class ContextItemView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    context_type: ContextType
    name: str
    aliases: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    is_active: bool = True


class VoiceMemoView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: Optional[str] = None
    transcript: Optional[str] = None
    processing_status: ProcessingStatus
    classification_status: ClassificationStatus
    classification_id: Optional[str] = None
    created_at: Optional[datetime] = None


class ClassificationView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    voice_memo_id: str
    user_id: str
    entity: str
    activity: str
    action_type: str
    confidence_scores: dict[str, float]
    people: list[dict[str, Any]]
    prophetic_words: list[dict[str, Any]]
    has_prophetic_content: bool
    discoveries: list[dict[str, Any]]
    brain_summary: str
    title_suggestion: Optional[str] = None
    processing_model: str
    processing_duration_ms: int
    created_at: Optional[datetime] = None


class ActionItemView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    classification_id: Optional[str]
    voice_memo_id: Optional[str]
    user_id: str
    tier: TierName
    action_type: str
    title: str
    description: str
    related_entity: str
    related_people: list[str]
    delivery_payload: dict[str, Any]
    status: ActionStatus
    priority: int
    rejection_reason: Optional[str] = None
    approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Run summary
# ---------------------------------------------------------------------------

class ClassificationRun(BaseModel):
    """What one successful classification run produced."""

    memo: VoiceMemoView
    classification: ClassificationView
    actions: list[ActionItemView]
    discoveries_added: int = 0
