"""
intelligence.py -- Read-only rollups over a user's classification history.

- person_brief: everything the memos say about one person
- detect_patterns: what dominated the last 30 days
- entity_dashboard: activity, people and open work for one entity
- daily_digest: the last 24 hours, rendered as a plain-text message by render_digest
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from memo_ingest.store import ActionItem, Classification, ContextItem, VoiceMemo, utcnow
from memo_ingest.taxonomy import TIERS

logger = logging.getLogger(__name__)

PATTERN_WINDOW_DAYS: int = 30
DIGEST_WINDOW_HOURS: int = 24

POSITIVE_TERMS: tuple[str, ...] = (
    "success", "great", "excited", "growth", "opportunity", "blessed", "progress", "win", "good",
)
NEGATIVE_TERMS: tuple[str, ...] = (
    "problem", "issue", "concern", "fail", "delay", "stuck", "frustrated", "risk", "behind",
)


class Mention(BaseModel):
    memo_title: str
    date: Optional[datetime] = None
    summary: str


class PersonBrief(BaseModel):
    name: str
    entity_link: Optional[str] = None
    role: Optional[str] = None
    total_mentions: int = 0
    recent_mentions: list[Mention] = Field(default_factory=list)
    action_items: list[dict[str, str]] = Field(default_factory=list)
    prophetic_words: list[dict[str, Any]] = Field(default_factory=list)
    last_mentioned: Optional[datetime] = None
    sentiment: str = "neutral"


class PatternInsight(BaseModel):
    type: str  # frequency | relationship | entity_focus | action_trend
    title: str
    description: str
    data: dict[str, Any] = Field(default_factory=dict)


class EntityDashboard(BaseModel):
    entity: str
    total_memos: int
    recent_activity: list[dict[str, Any]]
    top_people: list[dict[str, Any]]
    pending_actions: int
    recent_classifications: list[dict[str, Any]]


def infer_sentiment(summaries: list[str]) -> str:
    """Keyword tally over summaries: positive, negative, mixed or neutral."""
    if not summaries:
        return "neutral"
    text = " ".join(summaries).lower()
    pos = sum(1 for term in POSITIVE_TERMS if term in text)
    neg = sum(1 for term in NEGATIVE_TERMS if term in text)
    if pos > neg + 1:
        return "positive"
    if neg > pos + 1:
        return "negative"
    if pos > 0 and neg > 0:
        return "mixed"
    return "neutral"


def _top(counter: Counter, n: int) -> list[dict[str, Any]]:
    return [{"name": name, "count": count} for name, count in counter.most_common(n)]


def _people_counter(rows: list[Classification]) -> Counter:
    counter: Counter = Counter()
    for row in rows:
        for person in row.people or []:
            counter[person.get("name", "")] += 1
    counter.pop("", None)
    return counter


def person_brief(session: Session, user_id: str, person_name: str) -> PersonBrief:
    needle = person_name.strip().lower()

    context_row = session.scalar(
        select(ContextItem).where(
            ContextItem.user_id == user_id,
            ContextItem.context_type == "person",
            func.lower(ContextItem.name) == needle,
        )
    )

    rows = session.execute(
        select(Classification, VoiceMemo.title)
        .join(VoiceMemo, VoiceMemo.id == Classification.voice_memo_id)
        .where(Classification.user_id == user_id)
        .order_by(Classification.created_at.desc())
    ).all()
    matching = [
        (c, title) for c, title in rows
        if any((p.get("name") or "").lower() == needle for p in (c.people or []))
    ]

    actions = session.scalars(
        select(ActionItem).where(ActionItem.user_id == user_id).order_by(ActionItem.created_at.desc())
    ).all()
    related = [a for a in actions if any(p.lower() == needle for p in (a.related_people or []))]

    words: list[dict[str, Any]] = []
    for c, _title in matching:
        for w in c.prophetic_words or []:
            if (w.get("recipient") or "").lower() == needle:
                words.append({"content": w.get("content", ""), "date": c.created_at})

    entity_link: Optional[str] = None
    role: Optional[str] = None
    if context_row is not None:
        entity_link = (context_row.metadata_ or {}).get("entity_link")
        role = (context_row.metadata_ or {}).get("role")
    if not entity_link and matching:
        first = next(p for p in matching[0][0].people if (p.get("name") or "").lower() == needle)
        entity_link = first.get("entity_link")
        role = role or first.get("role")

    return PersonBrief(
        name=person_name,
        entity_link=entity_link,
        role=role,
        total_mentions=len(matching),
        recent_mentions=[
            Mention(memo_title=title or "Untitled Memo", date=c.created_at, summary=c.brain_summary or "")
            for c, title in matching[:10]
        ],
        action_items=[{"title": a.title, "status": a.status, "tier": a.tier} for a in related[:10]],
        prophetic_words=words[:10],
        last_mentioned=matching[0][0].created_at if matching else None,
        sentiment=infer_sentiment([c.brain_summary for c, _ in matching if c.brain_summary]),
    )


def detect_patterns(session: Session, user_id: str, now: Optional[datetime] = None) -> list[PatternInsight]:
    since = (now or utcnow()) - timedelta(days=PATTERN_WINDOW_DAYS)
    rows = session.scalars(
        select(Classification)
        .where(Classification.user_id == user_id, Classification.created_at >= since)
        .order_by(Classification.created_at.desc())
    ).all()
    if not rows:
        return []

    total = len(rows)
    insights: list[PatternInsight] = []

    entities = Counter(r.entity for r in rows)
    top_entities = _top(entities, 3)
    follow = f' Followed by "{top_entities[1]["name"]}" ({top_entities[1]["count"]}).' if len(top_entities) > 1 else ""
    insights.append(PatternInsight(
        type="entity_focus",
        title=f"Most active entity: {top_entities[0]['name']}",
        description=(
            f'In the last {PATTERN_WINDOW_DAYS} days, "{top_entities[0]["name"]}" appeared in '
            f"{top_entities[0]['count']} of {total} voice memos.{follow}"
        ),
        data={"entityCounts": dict(entities), "topEntities": top_entities},
    ))

    activities = Counter(r.activity for r in rows)
    top_activities = _top(activities, 3)
    insights.append(PatternInsight(
        type="frequency",
        title=f"Dominant activity: {top_activities[0]['name']}",
        description=(
            f'"{top_activities[0]["name"]}" is your most common activity type '
            f"({top_activities[0]['count']} memos)."
        ),
        data={"activityCounts": dict(activities), "topActivities": top_activities},
    ))

    people = _people_counter(rows)
    if people:
        top_people = _top(people, 5)
        leaders = ", ".join(f"{p['name']} ({p['count']})" for p in top_people[:3])
        insights.append(PatternInsight(
            type="relationship",
            title=f"Most mentioned person: {top_people[0]['name']}",
            description=(
                f'"{top_people[0]["name"]}" was mentioned in {top_people[0]["count"]} memos over the last '
                f"{PATTERN_WINDOW_DAYS} days. Top 3: {leaders}."
            ),
            data={"peopleCounts": {p["name"]: p["count"] for p in top_people}},
        ))

    action_types = Counter(r.action_type for r in rows)
    top_action_types = _top(action_types, 3)
    insights.append(PatternInsight(
        type="action_trend",
        title=f"Primary action mode: {top_action_types[0]['name']}",
        description=f'You are mostly in "{top_action_types[0]["name"]}" mode ({top_action_types[0]["count"]} memos).',
        data={"actionTypeCounts": dict(action_types), "topActionTypes": top_action_types},
    ))

    prophetic = sum(1 for r in rows if r.has_prophetic_content)
    if prophetic:
        pct = round(prophetic / total * 100)
        insights.append(PatternInsight(
            type="frequency",
            title=f"Prophetic content in {pct}% of memos",
            description=(
                f"{prophetic} of your {total} voice memos in the last {PATTERN_WINDOW_DAYS} days "
                "contained prophetic words or ministry content."
            ),
            data={"propheticCount": prophetic, "totalMemos": total, "percentage": pct},
        ))

    logger.info("Detected %d pattern insights for user %s over %d memos", len(insights), user_id, total)
    return insights


def entity_dashboard(session: Session, user_id: str, entity: str) -> EntityDashboard:
    rows = session.scalars(
        select(Classification)
        .where(Classification.user_id == user_id, Classification.entity == entity)
        .order_by(Classification.created_at.desc())
    ).all()

    pending = session.scalar(
        select(func.count())
        .select_from(ActionItem)
        .where(
            ActionItem.user_id == user_id,
            ActionItem.related_entity == entity,
            ActionItem.status == "pending",
        )
    ) or 0

    return EntityDashboard(
        entity=entity,
        total_memos=len(rows),
        recent_activity=_top(Counter(r.activity for r in rows), 7),
        top_people=_top(_people_counter(rows), 10),
        pending_actions=pending,
        recent_classifications=[
            {"date": r.created_at, "activity": r.activity, "summary": r.brain_summary or ""}
            for r in rows[:10]
        ],
    )


class DailyDigest(BaseModel):
    """Last-24h rollup: volume, tier mix, red items awaiting review, new names."""

    date_label: str
    since: datetime
    memos_processed: int
    tier_counts: dict[str, int]
    pending_red: list[dict[str, str]] = Field(default_factory=list)
    discoveries: list[dict[str, Any]] = Field(default_factory=list)
    entity_activity: list[dict[str, Any]] = Field(default_factory=list)


def daily_digest(session: Session, user_id: str, now: Optional[datetime] = None) -> DailyDigest:
    since = (now or utcnow()) - timedelta(hours=DIGEST_WINDOW_HOURS)
    rows = session.scalars(
        select(Classification)
        .where(Classification.user_id == user_id, Classification.created_at >= since)
        .order_by(Classification.created_at.desc())
    ).all()
    actions = session.scalars(
        select(ActionItem)
        .where(ActionItem.user_id == user_id, ActionItem.created_at >= since)
        .order_by(ActionItem.priority.desc(), ActionItem.created_at.desc())
    ).all()

    tier_counts = {tier: 0 for tier in TIERS}
    for a in actions:
        tier_counts[a.tier] = tier_counts.get(a.tier, 0) + 1

    return DailyDigest(
        date_label=since.strftime("%A, %B %d, %Y"),
        since=since,
        memos_processed=len(rows),
        tier_counts=tier_counts,
        pending_red=[
            {"id": a.id, "title": a.title, "description": a.description or ""}
            for a in actions if a.tier == "red" and a.status == "pending"
        ],
        discoveries=[d for r in rows for d in (r.discoveries or [])],
        entity_activity=_top(Counter(r.entity for r in rows), 6),
    )


def render_digest(digest: DailyDigest) -> tuple[str, str]:
    """Plain-text (subject, body) for a Deliverer."""
    subject = f"Voice Intelligence Daily Digest: {digest.date_label}"
    lines = [
        f"Voice Intelligence Digest for {digest.date_label}",
        "",
        f"Memos processed: {digest.memos_processed}",
        "Actions by tier: " + ", ".join(f"{t} {n}" for t, n in digest.tier_counts.items()),
    ]
    if digest.pending_red:
        lines += ["", f"Pending red-tier actions ({len(digest.pending_red)}):"]
        for a in digest.pending_red:
            lines.append(f"- {a['title']}" + (f": {a['description']}" if a["description"] else ""))
    if digest.discoveries:
        lines += ["", f"New discoveries ({len(digest.discoveries)}):"]
        for d in digest.discoveries:
            lines.append(f"- {d.get('type')}: {d.get('name')} ({d.get('inferred_context', '')})")
    if digest.entity_activity:
        lines += ["", "Entity activity:"]
        for e in digest.entity_activity:
            lines.append(f"- {e['name']}: {e['count']} memo{'s' if e['count'] != 1 else ''}")
    return subject, "\n".join(lines)
