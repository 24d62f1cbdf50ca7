"""Pytest configuration for the voice-intel test suite."""

from __future__ import annotations

import asyncio
import copy
import json
import os
from contextlib import closing
from typing import Any, Callable, Iterator, Optional, Union

import pytest
from sqlalchemy.orm import Session, sessionmaker


def _ensure_test_env() -> None:
    """Pin the environment that module-level configuration reads at import."""
    os.environ.pop("VOICE_INTEL_ENTITIES", None)
    os.environ.setdefault("CLAUDE_MODEL", "claude-sonnet-4-6")


_ensure_test_env()

from memo_ingest.errors import DeliveryFailure  # noqa: E402
from memo_ingest.store import VoiceMemo, make_session_factory  # noqa: E402
from memo_ingest.transcription import Transcript  # noqa: E402

USER = "user-1"
OTHER_USER = "user-2"

MARIA_TRANSCRIPT = (
    "Had a great time at TPC this morning. During worship I felt God say something for Maria: "
    "that this season of waiting is ending and the door she has been praying about will open. "
    "I need to tell her this week. Also remember to write up the notes from the elders meeting, "
    "and I want to keep thinking about the youth retreat idea."
)


class FakeCompletion:
    """Stands in for the model: returns a canned response, raises, or stalls."""

    def __init__(
        self,
        response: Union[str, dict[str, Any], None] = None,
        exc: Optional[BaseException] = None,
        delay: float = 0.0,
        model: str = "fake-model",
    ) -> None:
        self.response = response
        self.exc = exc
        self.delay = delay
        self.model = model
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system: str, user: str) -> str:
        self.calls.append((system, user))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        if isinstance(self.response, dict):
            return json.dumps(self.response)
        return self.response or ""


class FakeDeliverer:
    """Records outbound messages; addresses in fail_for raise DeliveryFailure."""

    def __init__(self, fail_for: Optional[set[str]] = None, delay: float = 0.0) -> None:
        self.fail_for = fail_for or set()
        self.delay = delay
        self.sent: list[dict[str, Any]] = []

    async def send(self, to: str, subject: str, body: str, meta: dict[str, Any]) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if to in self.fail_for:
            raise DeliveryFailure(f"refused {to}")
        self.sent.append({"to": to, "subject": subject, "body": body, "meta": meta})


class FakeTranscriber:
    def __init__(self, text: str = "", subtitles: Optional[str] = None, exc: Optional[BaseException] = None) -> None:
        self.text = text
        self.subtitles = subtitles
        self.exc = exc
        self.calls: list[tuple[int, str]] = []

    async def transcribe(self, audio: bytes, filename: str) -> Transcript:
        self.calls.append((len(audio), filename))
        if self.exc is not None:
            raise self.exc
        return Transcript(text=self.text, subtitles=self.subtitles)


MARIA_OUTPUT: dict[str, Any] = {
    "entity": "TPC Ministries",
    "activity": "Ministry",
    "action_type": "Deliver",
    "confidence": {"entity": 0.95, "activity": 0.9, "action": 0.85},
    "summary": "A prophetic word for Maria received during worship, plus notes and a retreat idea.",
    "people": [
        {"name": "Maria", "entity_link": "TPC Ministries", "role": None, "is_known": False},
    ],
    "prophetic_words": [
        {
            "recipient": "Maria",
            "content": "This season of waiting is ending and the door you have been praying about will open.",
            "timestamp_label": None,
        },
    ],
    "has_prophetic_content": True,
    "discoveries": [
        {"type": "person", "name": "Maria", "inferred_context": "Member of TPC who received a prophetic word."},
    ],
    "action_items": [
        {
            "tier": "red",
            "action_type": "Deliver",
            "title": "Share prophetic word with Maria",
            "description": "Deliver the word about the season of waiting ending.",
            "related_entity": "TPC Ministries",
            "related_people": ["Maria"],
            "delivery_payload": {},
        },
        {
            "tier": "yellow",
            "action_type": "Document",
            "title": "Write up elders meeting notes",
            "description": "Capture the notes from the elders meeting.",
            "related_entity": "TPC Ministries",
            "related_people": [],
            "delivery_payload": {},
        },
        {
            "tier": "green",
            "action_type": "Develop",
            "title": "Explore youth retreat idea",
            "description": "Keep developing the youth retreat concept.",
            "related_entity": "TPC Ministries",
            "related_people": [],
            "delivery_payload": {},
        },
    ],
    "title_suggestion": "Prophetic word for Maria",
}


@pytest.fixture
def sqlite_session_factory() -> sessionmaker:
    """A fresh in-memory database per test."""
    return make_session_factory("sqlite://")


@pytest.fixture
def session(sqlite_session_factory: sessionmaker) -> Iterator[Session]:
    with closing(sqlite_session_factory()) as s:
        yield s


@pytest.fixture
def maria_output() -> dict[str, Any]:
    return copy.deepcopy(MARIA_OUTPUT)


@pytest.fixture
def make_memo(session: Session) -> Callable[..., VoiceMemo]:
    """Insert a memo row directly; defaults to a transcribed, unclassified memo."""

    def _make(
        user_id: str = USER,
        title: Optional[str] = "Untitled Memo",
        transcript: Optional[str] = MARIA_TRANSCRIPT,
        processing_status: str = "completed",
    ) -> VoiceMemo:
        memo = VoiceMemo(
            user_id=user_id,
            title=title,
            transcript=transcript,
            processing_status=processing_status,
            classification_status="not_started",
        )
        session.add(memo)
        session.commit()
        return memo

    return _make


@pytest.fixture
def deliverer() -> FakeDeliverer:
    return FakeDeliverer()
