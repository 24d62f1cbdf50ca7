"""Unit tests for the read-only intelligence rollups."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any

import pytest
from sqlalchemy.orm import Session

from conftest import OTHER_USER, USER, FakeCompletion
from memo_ingest.classifier import classify_memo
from memo_ingest.intelligence import (
    daily_digest,
    detect_patterns,
    entity_dashboard,
    infer_sentiment,
    person_brief,
    render_digest,
)
from memo_ingest.store import utcnow


@pytest.fixture
def classified(session: Session, make_memo, maria_output: dict[str, Any]) -> None:
    memo = make_memo()
    asyncio.run(classify_memo(session, memo.id, USER, FakeCompletion(maria_output)))


@pytest.mark.usefixtures("classified")
def test_person_brief_collects_mentions_words_and_actions(session: Session) -> None:
    brief = person_brief(session, USER, "maria")

    assert brief.total_mentions == 1
    assert brief.entity_link == "TPC Ministries"
    assert brief.recent_mentions[0].memo_title == "Prophetic word for Maria"
    assert len(brief.prophetic_words) == 1
    assert brief.action_items == [{"title": "Share prophetic word with Maria", "status": "pending", "tier": "red"}]
    assert brief.last_mentioned is not None


@pytest.mark.usefixtures("classified")
def test_person_brief_is_scoped_per_user(session: Session) -> None:
    brief = person_brief(session, OTHER_USER, "Maria")
    assert brief.total_mentions == 0
    assert brief.last_mentioned is None


def test_no_history_means_no_patterns(session: Session) -> None:
    assert detect_patterns(session, USER) == []


@pytest.mark.usefixtures("classified")
def test_patterns_summarize_recent_memos(session: Session) -> None:
    insights = detect_patterns(session, USER)

    by_title = {i.title: i for i in insights}
    assert "Most active entity: TPC Ministries" in by_title
    assert "Dominant activity: Ministry" in by_title
    assert "Most mentioned person: Maria" in by_title
    assert "Primary action mode: Deliver" in by_title
    assert by_title["Prophetic content in 100% of memos"].data["propheticCount"] == 1


@pytest.mark.usefixtures("classified")
def test_patterns_ignore_memos_outside_window(session: Session) -> None:
    assert detect_patterns(session, USER, now=utcnow() + timedelta(days=60)) == []


@pytest.mark.usefixtures("classified")
def test_entity_dashboard_counts_memos_people_and_open_work(session: Session) -> None:
    dashboard = entity_dashboard(session, USER, "TPC Ministries")

    assert dashboard.total_memos == 1
    assert dashboard.recent_activity == [{"name": "Ministry", "count": 1}]
    assert dashboard.top_people == [{"name": "Maria", "count": 1}]
    assert dashboard.pending_actions == 1

    assert entity_dashboard(session, USER, "IHA").total_memos == 0


@pytest.mark.parametrize(
    ("summaries", "expected"),
    [
        ([], "neutral"),
        (["Great progress this week, a real win."], "positive"),
        (["Another delay; the project is stuck and the budget is a problem."], "negative"),
        (["Great meeting but one problem remains."], "mixed"),
        (["Met for coffee."], "neutral"),
    ],
)
def test_infer_sentiment(summaries: list[str], expected: str) -> None:
    assert infer_sentiment(summaries) == expected


@pytest.mark.usefixtures("classified")
def test_daily_digest_rolls_up_last_day(session: Session) -> None:
    digest = daily_digest(session, USER)

    assert digest.memos_processed == 1
    assert digest.tier_counts == {"red": 1, "yellow": 1, "green": 1}
    assert [a["title"] for a in digest.pending_red] == ["Share prophetic word with Maria"]
    assert [d["name"] for d in digest.discoveries] == ["Maria"]
    assert digest.entity_activity == [{"name": "TPC Ministries", "count": 1}]


@pytest.mark.usefixtures("classified")
def test_daily_digest_skips_older_activity(session: Session) -> None:
    digest = daily_digest(session, USER, now=utcnow() + timedelta(days=2))

    assert digest.memos_processed == 0
    assert digest.tier_counts == {"red": 0, "yellow": 0, "green": 0}
    assert digest.pending_red == []
    assert daily_digest(session, OTHER_USER).memos_processed == 0


@pytest.mark.usefixtures("classified")
def test_digest_renders_as_plain_text(session: Session) -> None:
    subject, body = render_digest(daily_digest(session, USER))

    assert subject.startswith("Voice Intelligence Daily Digest: ")
    assert "Memos processed: 1" in body
    assert "Actions by tier: red 1, yellow 1, green 1" in body
    assert "Pending red-tier actions (1):\n- Share prophetic word with Maria: " in body
    assert "- person: Maria (Member of TPC who received a prophetic word.)" in body
    assert "- TPC Ministries: 1 memo" in body
