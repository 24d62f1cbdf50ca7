"""
transcription.py -- Memo intake and the speech-to-text adapter.

Responsibility:
- Create memo rows on upload (audio pending, or text already final)
- Drive processing_status through pending -> processing -> completed/failed
  around one call to a Transcriber
- WhisperTranscriber: OpenAI audio transcription over httpx, with segment
  timings rendered as WebVTT subtitles

The pipeline treats the transcriber as a black box with two outcomes:
a transcript, or TranscriptionFailure.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional, Protocol

import httpx
from pydantic import BaseModel
from sqlalchemy.orm import Session

from memo_ingest.errors import NotFound, TranscriptionFailure
from memo_ingest.models import VoiceMemoView
from memo_ingest.store import VoiceMemo

logger = logging.getLogger(__name__)

OPENAI_BASE_URL: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
TRANSCRIPTION_MODEL: str = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")
TRANSCRIPTION_TIMEOUT_SECONDS: float = 300.0


class Transcript(BaseModel):
    text: str
    subtitles: Optional[str] = None


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes, filename: str) -> Transcript: ...


def _vtt_timestamp(seconds: float) -> str:
    millis = int(round(max(seconds, 0.0) * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


def segments_to_vtt(segments: list[dict[str, Any]]) -> str:
    """Render timed transcription segments as a WebVTT document."""
    lines = ["WEBVTT", ""]
    for i, seg in enumerate(segments, 1):
        text = str(seg.get("text", "")).strip()
        if not text:
            continue
        start = float(seg.get("start", 0.0))
        end = float(seg.get("end", start))
        lines.append(str(i))
        lines.append(f"{_vtt_timestamp(start)} --> {_vtt_timestamp(end)}")
        lines.append(text)
        lines.append("")
    return "\n".join(lines)


class WhisperTranscriber:
    """Transcriber backed by the OpenAI audio transcription endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = TRANSCRIPTION_MODEL,
        base_url: str = OPENAI_BASE_URL,
        timeout: float = TRANSCRIPTION_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        if not self.api_key:
            raise ValueError("OPENAI_API_KEY is required for WhisperTranscriber")
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def transcribe(self, audio: bytes, filename: str) -> Transcript:
        url = f"{self.base_url}/audio/transcriptions"
        logger.info("Transcribing %s (%d bytes) with %s", filename, len(audio), self.model)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                resp = await client.post(
                    url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data={"model": self.model, "response_format": "verbose_json"},
                    files={"file": (filename, audio)},
                )
                resp.raise_for_status()
                body = resp.json()
            except httpx.HTTPStatusError as exc:
                raise TranscriptionFailure(
                    f"Transcription service returned {exc.response.status_code}: {exc.response.text[:300]}"
                ) from exc
            except httpx.RequestError as exc:
                raise TranscriptionFailure(f"Failed to reach transcription service: {exc}") from exc
            except ValueError as exc:
                raise TranscriptionFailure(f"Transcription service returned a non-JSON body: {exc}") from exc
        if not isinstance(body, dict):
            raise TranscriptionFailure(f"Expected a JSON object from transcription service, got {type(body).__name__}")
        segments = body.get("segments") or []
        return Transcript(
            text=str(body.get("text", "")).strip(),
            subtitles=segments_to_vtt(segments) if segments else None,
        )


def create_memo(
    session: Session,
    user_id: str,
    title: Optional[str] = None,
    transcript: Optional[str] = None,
) -> VoiceMemoView:
    """
    Record a new memo.

    A memo that arrives with text skips transcription and is ready to
    classify; an audio memo starts pending.
    """
    text = (transcript or "").strip()
    memo = VoiceMemo(
        user_id=user_id,
        title=title,
        transcript=text or None,
        processing_status="completed" if text else "pending",
        classification_status="not_started",
    )
    session.add(memo)
    session.commit()
    logger.info("Memo %s created for user %s (status=%s)", memo.id, user_id, memo.processing_status)
    return VoiceMemoView.model_validate(memo)


async def transcribe_memo(
    session: Session,
    memo_id: str,
    user_id: str,
    audio: bytes,
    filename: str,
    transcriber: Transcriber,
) -> VoiceMemoView:
    """Run the transcriber for one memo and record the outcome."""
    memo = session.get(VoiceMemo, memo_id)
    if memo is None or memo.user_id != user_id:
        raise NotFound(f"Voice memo {memo_id} not found")

    memo.processing_status = "processing"
    session.commit()

    try:
        result = await transcriber.transcribe(audio, filename)
        if not result.text:
            raise TranscriptionFailure("Transcription returned no text")
    except Exception as exc:
        memo.processing_status = "failed"
        session.commit()
        logger.error("Transcription failed for memo %s: %s: %s", memo_id, type(exc).__name__, exc)
        if isinstance(exc, TranscriptionFailure):
            raise
        raise TranscriptionFailure(f"Transcriber error: {exc}") from exc

    memo.transcript = result.text
    memo.subtitles = result.subtitles
    memo.processing_status = "completed"
    session.commit()
    logger.info("Memo %s transcribed (%d chars)", memo_id, len(result.text))
    return VoiceMemoView.model_validate(memo)
