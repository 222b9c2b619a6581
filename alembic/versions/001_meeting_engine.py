"""Meeting engine tables.

Revision ID: 001_meeting_engine
Revises:
Create Date: 2026-10-16

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON, JSONB, UUID

from src.meetbot.config import get_settings

# revision identifiers, used by Alembic.
revision: str = "001_meeting_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SCHEMA = get_settings().DATABASE_SCHEMA


def _id_column() -> sa.Column:
    return sa.Column(
        "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now())


def upgrade() -> None:
    op.execute(f'CREATE SCHEMA IF NOT EXISTS "{SCHEMA}"')

    op.create_table(
        "meetings",
        _id_column(),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("team_id", sa.String(100), nullable=True),
        sa.Column("title", sa.String(500), nullable=False, server_default=sa.text("'Untitled Meeting'")),
        sa.Column("meeting_url", sa.String(1000), nullable=True),
        sa.Column("platform", sa.String(50), server_default=sa.text("'google_meet'")),
        sa.Column("status", sa.String(50), server_default=sa.text("'scheduled'")),
        sa.Column("scheduled_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scheduled_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("calendar_event_id", sa.String(300), nullable=True),
        sa.Column("bot_id", sa.String(200), nullable=True),
        sa.Column("bot_excluded", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("recording_url", sa.String(2000), nullable=True),
        sa.Column("metadata", JSONB(), server_default=sa.text("'{}'::jsonb")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", "calendar_event_id", name="uq_meeting_user_event"),
        schema=SCHEMA,
    )
    op.create_index("ix_meetings_user_id", "meetings", ["user_id"], schema=SCHEMA)
    op.create_index("ix_meetings_status_bot", "meetings", ["status", "bot_id"], schema=SCHEMA)
    op.create_index("ix_meetings_bot_id", "meetings", ["bot_id"], schema=SCHEMA)

    op.create_table(
        "meeting_transcripts",
        _id_column(),
        sa.Column("meeting_id", UUID(as_uuid=True), nullable=False),
        sa.Column("full_text", sa.Text(), nullable=False),
        sa.Column("segments", JSON(), server_default=sa.text("'[]'::json")),
        sa.Column("language", sa.String(20), server_default=sa.text("'en'")),
        sa.Column("word_count", sa.Integer(), server_default=sa.text("0")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("meeting_id", name="uq_transcript_meeting"),
        schema=SCHEMA,
    )

    op.create_table(
        "meeting_participants",
        _id_column(),
        sa.Column("meeting_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("position", sa.Integer(), server_default=sa.text("0")),
        schema=SCHEMA,
    )
    op.create_index("ix_participants_meeting", "meeting_participants", ["meeting_id"], schema=SCHEMA)

    op.create_table(
        "meeting_insights",
        _id_column(),
        sa.Column("meeting_id", UUID(as_uuid=True), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        _created_at(),
        schema=SCHEMA,
    )
    op.create_index("ix_insights_meeting", "meeting_insights", ["meeting_id"], schema=SCHEMA)

    op.create_table(
        "meeting_bot_settings",
        _id_column(),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("auto_join_enabled", sa.Boolean(), server_default=sa.text("false")),
        sa.Column("bot_name", sa.String(200), server_default=sa.text("'Meeting Assistant'")),
        sa.Column("bot_image", sa.String(1000), nullable=True),
        sa.Column("entry_message", sa.Text(), nullable=True),
        sa.Column("recording_mode", sa.String(50), server_default=sa.text("'speaker_view'")),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("user_id", name="uq_bot_settings_user"),
        schema=SCHEMA,
    )

    op.create_table(
        "calendar_connections",
        _id_column(),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("provider", sa.String(50), server_default=sa.text("'google'")),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true")),
        _created_at(),
        sa.UniqueConstraint("user_id", "provider", name="uq_calendar_user_provider"),
        schema=SCHEMA,
    )

    op.create_table(
        "bot_deployment_timers",
        sa.Column("meeting_id", UUID(as_uuid=True), primary_key=True),
        sa.Column("wake_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("lease_until", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        schema=SCHEMA,
    )
    op.create_index("ix_timers_wake_at", "bot_deployment_timers", ["wake_at"], schema=SCHEMA)

    op.create_table(
        "notifications",
        _id_column(),
        sa.Column("user_id", sa.String(100), nullable=False),
        sa.Column("title", sa.String(300), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("type", sa.String(20), server_default=sa.text("'info'")),
        sa.Column("link", sa.String(1000), nullable=True),
        sa.Column("metadata", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("read", sa.Boolean(), server_default=sa.text("false")),
        _created_at(),
        schema=SCHEMA,
    )
    op.create_index("ix_notifications_user", "notifications", ["user_id", "read"], schema=SCHEMA)

    op.create_table(
        "webhook_events",
        _id_column(),
        sa.Column("source", sa.String(50), server_default=sa.text("'meetingbaas'")),
        sa.Column("delivery_id", sa.String(200), nullable=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("bot_id", sa.String(200), nullable=True),
        sa.Column("payload", JSON(), server_default=sa.text("'{}'::json")),
        sa.Column("processed", sa.Boolean(), server_default=sa.text("false")),
        _created_at(),
        sa.UniqueConstraint("delivery_id", name="uq_webhook_delivery"),
        schema=SCHEMA,
    )


def downgrade() -> None:
    for table in (
        "webhook_events",
        "notifications",
        "bot_deployment_timers",
        "calendar_connections",
        "meeting_bot_settings",
        "meeting_insights",
        "meeting_participants",
        "meeting_transcripts",
        "meetings",
    ):
        op.drop_table(table, schema=SCHEMA)
