"""create access applications table

Revision ID: b7c8d9e0f1a2
Revises:
Create Date: 2026-10-19 09:00:00.000000

This migration:
1. Creates the sequence used to number applications (DACO-1, DACO-2, ...)
2. Creates the state and pause reason enum types
3. Creates the access_applications table with its query and flag columns
4. Adds the indexes used by searches and batch job criteria
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "b7c8d9e0f1a2"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

APPLICATION_STATES = (
    "DRAFT",
    "SIGN AND SUBMIT",
    "REVIEW",
    "REVISIONS REQUESTED",
    "APPROVED",
    "PAUSED",
    "REJECTED",
    "CLOSED",
    "EXPIRED",
)

PAUSE_REASONS = ("PENDING ATTESTATION", "ADMIN PAUSE")


def upgrade() -> None:
    """Create the access_applications table."""
    op.execute(sa.schema.CreateSequence(sa.Sequence("access_applications_app_number_seq")))

    state_enum = postgresql.ENUM(
        *APPLICATION_STATES,
        name="access_application_state",
        create_type=False,
    )
    state_enum.create(op.get_bind(), checkfirst=True)

    pause_reason_enum = postgresql.ENUM(
        *PAUSE_REASONS,
        name="access_pause_reason",
        create_type=False,
    )
    pause_reason_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "access_applications",
        # Identity
        sa.Column(
            "app_number",
            sa.Integer(),
            server_default=sa.text("nextval('access_applications_app_number_seq')"),
            nullable=False,
        ),
        sa.Column("app_id", sa.String(length=50), nullable=False),
        # Queryable fields
        sa.Column("state", state_enum, nullable=False),
        sa.Column("submitter_id", sa.String(length=255), nullable=False),
        sa.Column("submitted_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("attested_at_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pause_reason", pause_reason_enum, nullable=True),
        # Renewal links
        sa.Column("is_renewal", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("source_app_id", sa.String(length=50), nullable=True),
        sa.Column("renewal_app_id", sa.String(length=50), nullable=True),
        sa.Column("renewal_period_end_date_utc", sa.DateTime(timezone=True), nullable=True),
        # Batch notification flags
        sa.Column("attestation_required_notification_sent", sa.DateTime(timezone=True), nullable=True),
        sa.Column("application_paused_notification_sent", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_expiry_notification_sent", sa.DateTime(timezone=True), nullable=True),
        sa.Column("second_expiry_notification_sent", sa.DateTime(timezone=True), nullable=True),
        sa.Column("application_expired_notification_sent", sa.DateTime(timezone=True), nullable=True),
        # Search and document
        sa.Column(
            "search_values",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("document", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        # Audit timestamps
        sa.Column(
            "created_at_utc",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "last_updated_at_utc",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        # Constraints
        sa.PrimaryKeyConstraint("app_number"),
        sa.UniqueConstraint("app_id", name="uq_access_applications_app_id"),
    )

    op.create_index("ix_access_applications_state", "access_applications", ["state"], unique=False)
    op.create_index(
        "ix_access_applications_submitter_id", "access_applications", ["submitter_id"], unique=False
    )
    op.create_index(
        "ix_access_applications_expires_at_utc",
        "access_applications",
        ["expires_at_utc"],
        unique=False,
    )
    op.create_index(
        "ix_access_applications_approved_at_utc",
        "access_applications",
        ["approved_at_utc"],
        unique=False,
    )
    # GIN index over the precomputed search values
    op.create_index(
        "ix_access_applications_search_values",
        "access_applications",
        ["search_values"],
        unique=False,
        postgresql_using="gin",
    )


def downgrade() -> None:
    """Drop the access_applications table."""
    op.drop_index("ix_access_applications_search_values", table_name="access_applications")
    op.drop_index("ix_access_applications_approved_at_utc", table_name="access_applications")
    op.drop_index("ix_access_applications_expires_at_utc", table_name="access_applications")
    op.drop_index("ix_access_applications_submitter_id", table_name="access_applications")
    op.drop_index("ix_access_applications_state", table_name="access_applications")
    op.drop_table("access_applications")

    postgresql.ENUM(name="access_pause_reason").drop(op.get_bind(), checkfirst=True)
    postgresql.ENUM(name="access_application_state").drop(op.get_bind(), checkfirst=True)
    op.execute(sa.schema.DropSequence(sa.Sequence("access_applications_app_number_seq")))
