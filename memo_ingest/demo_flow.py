"""
demo_flow.py -- End-to-end run for one voice memo.

Runs the complete flow for a single memo:
1. Create the memo (from a transcript file, or from audio via Whisper)
2. Transcribe, if audio was given
3. Classify against the user's Context Store
4. Print the classification, the action queue and new discoveries

Usage:
    python -m memo_ingest.demo_flow --user-id u1 --transcript memo.txt
    python -m memo_ingest.demo_flow --user-id u1 --audio memo.m4a --title "Board prep"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from memo_ingest.classifier import classify_memo
from memo_ingest.errors import VoiceIntelError
from memo_ingest.extractor import ClaudeCompletion
from memo_ingest.models import ClassificationRun
from memo_ingest.store import make_session_factory
from memo_ingest.transcription import WhisperTranscriber, create_memo, transcribe_memo

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("voice_intel.demo")


def _banner(text: str) -> None:
    logger.info("=" * 60)
    logger.info(text)
    logger.info("=" * 60)


async def run_pipeline(
    db_url: str,
    user_id: str,
    title: str | None = None,
    transcript_path: str | None = None,
    audio_path: str | None = None,
) -> ClassificationRun:
    """Execute intake, transcription and classification for one memo."""
    session_factory = make_session_factory(db_url)
    with session_factory() as session:
        _banner("STEP 1: Creating memo")
        transcript = Path(transcript_path).read_text(encoding="utf-8") if transcript_path else None
        memo = create_memo(session, user_id, title=title, transcript=transcript)
        logger.info("Memo %s (processing_status=%s)", memo.id, memo.processing_status)

        if audio_path:
            _banner("STEP 2: Transcribing audio")
            audio = Path(audio_path).read_bytes()
            memo = await transcribe_memo(
                session, memo.id, user_id, audio, Path(audio_path).name, WhisperTranscriber(),
            )
            logger.info("Transcript: %d chars", len(memo.transcript or ""))

        _banner("STEP 3: Classifying via Claude")
        run = await classify_memo(session, memo.id, user_id, ClaudeCompletion())

    _banner("PIPELINE COMPLETE")
    c = run.classification
    logger.info("Title:          %s", run.memo.title)
    logger.info("Entity:         %s (%.2f)", c.entity, c.confidence_scores.get("entity", 0.0))
    logger.info("Activity:       %s (%.2f)", c.activity, c.confidence_scores.get("activity", 0.0))
    logger.info("Action type:    %s (%.2f)", c.action_type, c.confidence_scores.get("action", 0.0))
    logger.info("Prophetic:      %s", "yes" if c.has_prophetic_content else "no")
    logger.info("Actions:        %d", len(run.actions))
    for a in run.actions:
        logger.info("  [%s/%s] %s -- %s", a.tier, a.status, a.action_type, a.title)
    logger.info("Discoveries:    %d new context items", run.discoveries_added)
    logger.info("Model time:     %dms", c.processing_duration_ms)
    return run


def main() -> None:
    parser = argparse.ArgumentParser(description="Voice Intel -- classify one memo end to end")
    parser.add_argument("--user-id", type=str, required=True, help="Owner of the memo and context")
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--transcript", type=str, help="Path to a plain-text transcript")
    source.add_argument("--audio", type=str, help="Path to an audio file to transcribe")
    parser.add_argument("--title", type=str, default=None, help="Memo title")
    parser.add_argument("--db-url", type=str, default=None, help="SQLAlchemy database URL")
    parser.add_argument("--json", action="store_true", help="Print the run as JSON")
    args = parser.parse_args()

    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
    if not os.environ.get("ANTHROPIC_API_KEY"):
        logger.error("ANTHROPIC_API_KEY not set. Set it in .env or environment.")
        sys.exit(1)

    db_url = args.db_url or os.environ.get("VOICE_INTEL_DB_URL", "sqlite:///voice_intel.db")
    try:
        run = asyncio.run(run_pipeline(db_url, args.user_id, args.title, args.transcript, args.audio))
    except VoiceIntelError as exc:
        logger.error("Pipeline failed: %s: %s", type(exc).__name__, exc)
        sys.exit(1)
    if args.json:
        print(json.dumps(run.model_dump(mode="json"), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
