"""Post-meeting processing -- transcript acquisition and storage.

Provides TranscriptionService (speech-to-text, diarization parsing and
vendor transcript fetch) and MeetingCompletionPipeline, the
``meeting.complete`` task handler.
"""
