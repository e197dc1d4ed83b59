"""Initial tracker schema: organizations, users, OAuth tokens, deals, calendar, insights.

Revision ID: 001_initial_tracker
Revises:
Create Date: 2026-10-19

Creates:
- organizations, users, oauth_tokens: identity and encrypted Google credentials
- accounts, opportunities, contacts: matching inputs and consolidation status
- calendar_sync_states, calendar_events: sync cursors and mirrored events
- gong_calls, granola_notes: parsed transcript records (two sources)
- consolidated_opportunity_insights: one snapshot per opportunity

Deal tables carry no foreign keys (application-level referential integrity).
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSON, UUID

# revision identifiers, used by Alembic.
revision: str = "001_initial_tracker"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        UUID(as_uuid=True),
        primary_key=True,
        server_default=sa.text("gen_random_uuid()"),
    )


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _json_list(name: str) -> sa.Column:
    return sa.Column(name, JSON(), server_default=sa.text("'[]'::json"), nullable=True)


def _transcript_columns() -> list[sa.Column]:
    return [
        _id_column(),
        sa.Column("opportunity_id", UUID(as_uuid=True), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("meeting_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("calendar_event_id", sa.String(1024), nullable=True),
        sa.Column("transcript", sa.Text(), nullable=True),
        sa.Column(
            "parsing_status",
            sa.String(20),
            server_default=sa.text("'pending'"),
            nullable=True,
        ),
        sa.Column("parsed_at", sa.DateTime(timezone=True), nullable=True),
        _json_list("pain_points"),
        _json_list("goals"),
        sa.Column("risk_assessment", JSON(), nullable=True),
        *_timestamp_columns(),
    ]


def upgrade() -> None:
    # ── Identity ─────────────────────────────────────────────────────────

    op.create_table(
        "organizations",
        _id_column(),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("domain", sa.String(255), nullable=True),
        *_timestamp_columns(),
    )

    op.create_table(
        "users",
        _id_column(),
        sa.Column(
            "organization_id",
            UUID(as_uuid=True),
            sa.ForeignKey(
                "organizations.id",
                ondelete="SET NULL",
                name="fk_users_organization_id_organizations",
            ),
            nullable=True,
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(200), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )

    op.create_table(
        "oauth_tokens",
        _id_column(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey(
                "users.id", ondelete="CASCADE", name="fk_oauth_tokens_user_id_users"
            ),
            nullable=False,
        ),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scope", sa.Text(), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint("user_id", "provider", name="uq_oauth_tokens_user_provider"),
    )

    # ── Deals ────────────────────────────────────────────────────────────

    op.create_table(
        "accounts",
        _id_column(),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("website", sa.String(500), nullable=True),
        *_timestamp_columns(),
    )

    op.create_table(
        "opportunities",
        _id_column(),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("account_id", UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(300), nullable=False),
        sa.Column("stage", sa.String(50), server_default=sa.text("'discovery'"), nullable=True),
        sa.Column(
            "consolidation_status",
            sa.String(20),
            server_default=sa.text("'idle'"),
            nullable=True,
        ),
        *_timestamp_columns(),
    )

    op.create_table(
        "contacts",
        _id_column(),
        sa.Column("organization_id", UUID(as_uuid=True), nullable=False),
        sa.Column("opportunity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("account_id", UUID(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("title", sa.String(200), nullable=True),
        *_timestamp_columns(),
    )
    op.create_index("ix_contacts_email", "contacts", ["email"])

    # ── Calendar ─────────────────────────────────────────────────────────

    op.create_table(
        "calendar_sync_states",
        _id_column(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey(
                "users.id",
                ondelete="CASCADE",
                name="fk_calendar_sync_states_user_id_users",
            ),
            nullable=False,
        ),
        sa.Column("provider", sa.String(50), server_default=sa.text("'google'"), nullable=True),
        sa.Column("sync_token", sa.Text(), nullable=True),
        sa.Column("time_min", sa.DateTime(timezone=True), nullable=True),
        sa.Column("time_max", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_sync_status", sa.String(30), nullable=True),
        sa.Column("last_sync_error", sa.Text(), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint(
            "user_id", "provider", name="uq_calendar_sync_state_user_provider"
        ),
    )

    op.create_table(
        "calendar_events",
        _id_column(),
        sa.Column(
            "user_id",
            UUID(as_uuid=True),
            sa.ForeignKey(
                "users.id",
                ondelete="CASCADE",
                name="fk_calendar_events_user_id_users",
            ),
            nullable=False,
        ),
        sa.Column("google_event_id", sa.String(1024), nullable=False),
        sa.Column("summary", sa.String(1000), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("location", sa.String(1000), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        _json_list("attendees"),
        sa.Column("organizer_email", sa.String(255), nullable=True),
        sa.Column("meeting_url", sa.String(1000), nullable=True),
        sa.Column("is_external", sa.Boolean(), server_default=sa.text("false"), nullable=True),
        sa.Column("opportunity_id", UUID(as_uuid=True), nullable=True),
        sa.Column("account_id", UUID(as_uuid=True), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint(
            "user_id", "google_event_id", name="uq_calendar_event_user_google_id"
        ),
    )
    op.create_index(
        "ix_calendar_events_user_start", "calendar_events", ["user_id", "start_time"]
    )
    op.create_index("ix_calendar_events_opportunity", "calendar_events", ["opportunity_id"])

    # ── Transcript Insights ──────────────────────────────────────────────

    op.create_table(
        "gong_calls",
        *_transcript_columns(),
        sa.Column("gong_call_id", sa.String(200), nullable=True),
    )
    op.create_index("ix_gong_calls_opportunity_id", "gong_calls", ["opportunity_id"])

    op.create_table("granola_notes", *_transcript_columns())
    op.create_index("ix_granola_notes_opportunity_id", "granola_notes", ["opportunity_id"])

    op.create_table(
        "consolidated_opportunity_insights",
        _id_column(),
        sa.Column("opportunity_id", UUID(as_uuid=True), nullable=False),
        _json_list("pain_points"),
        _json_list("goals"),
        sa.Column(
            "risk_assessment", JSON(), server_default=sa.text("'{}'::json"), nullable=True
        ),
        _json_list("why_and_why_now"),
        _json_list("quantifiable_metrics"),
        _json_list("key_quotes"),
        _json_list("objections"),
        sa.Column("meeting_count", sa.Integer(), server_default=sa.text("0"), nullable=True),
        sa.Column("consolidated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("opportunity_id", name="uq_consolidated_insights_opportunity"),
    )


def downgrade() -> None:
    op.drop_table("consolidated_opportunity_insights")
    op.drop_index("ix_granola_notes_opportunity_id", table_name="granola_notes")
    op.drop_table("granola_notes")
    op.drop_index("ix_gong_calls_opportunity_id", table_name="gong_calls")
    op.drop_table("gong_calls")
    op.drop_index("ix_calendar_events_opportunity", table_name="calendar_events")
    op.drop_index("ix_calendar_events_user_start", table_name="calendar_events")
    op.drop_table("calendar_events")
    op.drop_table("calendar_sync_states")
    op.drop_index("ix_contacts_email", table_name="contacts")
    op.drop_table("contacts")
    op.drop_table("opportunities")
    op.drop_table("accounts")
    op.drop_table("oauth_tokens")
    op.drop_table("users")
    op.drop_table("organizations")
