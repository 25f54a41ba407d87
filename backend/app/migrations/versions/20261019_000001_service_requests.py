"""service requests and notification outbox

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    json_type = sa.JSON().with_variant(postgresql.JSONB, "postgresql")

    op.create_table(
        "service_requests",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.Integer(), nullable=False),
        sa.Column("professional_id", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "estimated_budget",
            sa.Numeric(12, 2),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column("address", sa.String(length=255), nullable=False),
        sa.Column("district", sa.String(length=120), nullable=False),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("reference", sa.String(length=255), nullable=True),
        sa.Column("service_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "urgency",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'medium'"),
        ),
        sa.Column("additional_notes", sa.Text(), nullable=True),
        sa.Column("photo_urls", json_type, nullable=False),
        sa.Column(
            "state",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'pending'"),
        ),
        sa.Column("requested_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.CheckConstraint(
            "state IN ('pending','accepted','rejected','cancelled','completed')",
            name="chk_service_request_state",
        ),
        sa.CheckConstraint(
            "estimated_budget >= 0", name="chk_service_request_budget_non_negative"
        ),
        sqlite_autoincrement=True,
    )

    op.create_index(
        "idx_service_requests_client",
        "service_requests",
        ["client_id", "requested_at"],
        unique=False,
    )
    op.create_index(
        "idx_service_requests_professional",
        "service_requests",
        ["professional_id", "requested_at"],
        unique=False,
    )
    op.create_index(
        "uq_service_requests_pending_pair",
        "service_requests",
        ["client_id", "professional_id"],
        unique=True,
        sqlite_where=sa.text("state = 'pending' AND active = 1"),
        postgresql_where=sa.text("state = 'pending' AND active"),
    )

    op.create_table(
        "notification_outbox",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("template_key", sa.String(length=64), nullable=False),
        sa.Column("payload_json", json_type, nullable=False),
        sa.Column("dedupe_key", sa.String(length=128), nullable=False),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'PENDING'"),
        ),
        sa.Column(
            "attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column(
            "next_attempt_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("dedupe_key", name="uniq_notification_outbox_dedupe_key"),
    )
    op.create_index(
        "idx_notification_outbox_status_next",
        "notification_outbox",
        ["status", "next_attempt_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("idx_notification_outbox_status_next", table_name="notification_outbox")
    op.drop_table("notification_outbox")
    op.drop_index("uq_service_requests_pending_pair", table_name="service_requests")
    op.drop_index("idx_service_requests_professional", table_name="service_requests")
    op.drop_index("idx_service_requests_client", table_name="service_requests")
    op.drop_table("service_requests")
