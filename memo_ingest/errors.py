"""
errors.py -- Typed failures for the voice-memo intelligence pipeline.

Pipeline errors (TranscriptionNotReady, TranscriptionFailure, ModelCallFailure,
SchemaViolation) end a classification run. DiscoveryMergeFailure is logged
and skipped by the classifier. NotFound, InvalidTransition and ValidationError
come from the action state machine and are always surfaced to the caller.
"""

from __future__ import annotations


class VoiceIntelError(Exception):
    """Base class for every error raised by memo_ingest."""


class TranscriptionNotReady(VoiceIntelError):
    """Classification was attempted before a final transcript exists."""


class TranscriptionFailure(VoiceIntelError):
    """The speech-to-text service failed to produce a transcript."""


class ModelCallFailure(VoiceIntelError):
    """The completion call errored or timed out."""


class SchemaViolation(VoiceIntelError):
    """The model output was not valid JSON or broke the output contract."""

    def __init__(self, message: str, raw_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response


class DeliveryFailure(VoiceIntelError):
    """An outbound message for an approved action could not be sent."""


class DiscoveryMergeFailure(VoiceIntelError):
    """A discovery could not be folded back into the Context Store."""


class NotFound(VoiceIntelError):
    """The record does not exist or is not owned by the requesting user."""


class InvalidTransition(VoiceIntelError):
    """The requested status change is not in the allowed transition table."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move action from '{current}' to '{target}'")
        self.current = current
        self.target = target


class ValidationError(VoiceIntelError):
    """A transition request is missing a required field."""
