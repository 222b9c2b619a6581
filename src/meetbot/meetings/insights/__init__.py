"""AI meeting insights -- structured extraction from transcripts.

Provides InsightGenerator, the ``generate.insights`` task handler.
"""
