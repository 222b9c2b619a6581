"""Meeting engine exceptions.

Pipeline-fatal errors propagate out of task handlers so the task
consumer's retry/dead-letter policy decides what happens next.
"""

from __future__ import annotations


class MeetingError(Exception):
    """Base class for meeting engine errors."""


class MeetingNotFoundError(MeetingError):
    def __init__(self, meeting_id: str) -> None:
        super().__init__(f"Meeting not found: {meeting_id}")
        self.meeting_id = meeting_id


class NoTranscriptSourceError(MeetingError):
    """No audio, transcript or diarization source is available."""


class TranscriptionError(MeetingError):
    """A transcript source exists but could not be turned into text."""


class AudioTooLargeError(TranscriptionError):
    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        super().__init__(
            f"Audio file is {size_bytes / 1024 / 1024:.1f}MB, "
            f"exceeds the {limit_bytes / 1024 / 1024:.0f}MB transcription limit"
        )
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes


class InsightParseError(MeetingError):
    """The LLM returned output that does not match the insight schema."""
