"""create registrations

Revision ID: 0001_create_registrations
Revises:
Create Date: 2026-10-18

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql as pg


# revision identifiers, used by Alembic.
revision = "0001_create_registrations"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "registrations",
        sa.Column("id", pg.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("event_id", sa.Integer(), nullable=False),
        sa.Column("ride_level", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False, server_default=sa.text("'ride'")),
        sa.Column("user_id", pg.UUID(as_uuid=True), nullable=True),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("first_name", sa.Text(), nullable=False),
        sa.Column("last_name", sa.Text(), nullable=False),
        sa.Column("is_waitlist", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("waitlist_joined_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("waitlist_promoted_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancel_token_hash", sa.String(64), nullable=False),
        sa.Column("cancel_token_issued_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("cancelled_at", pg.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("created_at", pg.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.UniqueConstraint("cancel_token_hash", name="uq_registrations_cancel_token_hash"),
        sa.CheckConstraint("email <> ''", name="ck_registrations_registrations_email_present"),
        sa.CheckConstraint(
            "(NOT is_waitlist) OR waitlist_joined_at IS NOT NULL",
            name="ck_registrations_registrations_waitlist_joined",
        ),
    )

    # one active row per identity and level
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_reg_active_user
        ON registrations (event_id, ride_level, user_id)
        WHERE cancelled_at IS NULL AND user_id IS NOT NULL
    """)
    op.execute("""
        CREATE UNIQUE INDEX IF NOT EXISTS uq_reg_active_guest
        ON registrations (event_id, ride_level, email)
        WHERE cancelled_at IS NULL AND user_id IS NULL
    """)
    op.create_index(
        "ix_reg_event_level_active",
        "registrations",
        ["event_id", "ride_level", "is_waitlist", "cancelled_at"],
    )
    # promotion queue scan
    op.execute("""
        CREATE INDEX IF NOT EXISTS ix_reg_waitlist_queue
        ON registrations (event_id, ride_level, waitlist_joined_at)
        WHERE is_waitlist AND cancelled_at IS NULL
    """)


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_reg_waitlist_queue")
    op.drop_index("ix_reg_event_level_active", table_name="registrations")
    op.execute("DROP INDEX IF EXISTS uq_reg_active_guest")
    op.execute("DROP INDEX IF EXISTS uq_reg_active_user")
    op.drop_table("registrations")
