"""Create membership_quotas and cooldown_flags.

Revision ID: 7f3a1c9d2b40
Revises:
Create Date: 2026-10-18 12:00:00.000000

On PostgreSQL this also enables Row Level Security: a principal may read
its own quota row and the flags of resources it owns. No write policies are
created, so writes only happen through the backend's service role.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7f3a1c9d2b40"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "membership_quotas",
        sa.Column("principal_id", sa.String(length=36), nullable=False),
        sa.Column(
            "level",
            sa.Enum("FREE", "STANDARD", "PREMIUM", "TOP_TIER", name="memberlevel", native_enum=False),
            nullable=False,
        ),
        sa.Column("monthly_quota", sa.BigInteger(), nullable=False),
        sa.Column("daily_limit", sa.Integer(), nullable=False),
        sa.Column("remaining_monthly", sa.BigInteger(), nullable=False),
        sa.Column("remaining_daily", sa.Integer(), nullable=False),
        sa.Column("monthly_reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("daily_reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("monthly_anchor_day", sa.SmallInteger(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.CheckConstraint("monthly_quota >= 0", name="ck_membership_quotas_monthly_quota_non_negative"),
        sa.CheckConstraint("daily_limit >= 0", name="ck_membership_quotas_daily_limit_non_negative"),
        sa.CheckConstraint(
            "remaining_monthly >= 0 AND remaining_monthly <= monthly_quota",
            name="ck_membership_quotas_remaining_monthly_bounds",
        ),
        sa.CheckConstraint(
            "remaining_daily >= 0 AND remaining_daily <= daily_limit",
            name="ck_membership_quotas_remaining_daily_bounds",
        ),
        sa.CheckConstraint(
            "monthly_anchor_day BETWEEN 1 AND 31",
            name="ck_membership_quotas_monthly_anchor_day_range",
        ),
        sa.PrimaryKeyConstraint("principal_id"),
    )
    with op.batch_alter_table("membership_quotas", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_membership_quotas_level"), ["level"], unique=False)
        batch_op.create_index(batch_op.f("ix_membership_quotas_monthly_reset_at"), ["monthly_reset_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_membership_quotas_daily_reset_at"), ["daily_reset_at"], unique=False)

    op.create_table(
        "cooldown_flags",
        sa.Column("resource_id", sa.String(length=36), nullable=False),
        sa.Column("field", sa.String(length=64), nullable=False),
        sa.Column("owner_id", sa.String(length=36), nullable=True),
        sa.Column("value", sa.Boolean(), nullable=False),
        sa.Column("last_changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)"), nullable=False),
        sa.PrimaryKeyConstraint("resource_id", "field"),
    )
    with op.batch_alter_table("cooldown_flags", schema=None) as batch_op:
        batch_op.create_index(batch_op.f("ix_cooldown_flags_owner_id"), ["owner_id"], unique=False)

    # Only run on PostgreSQL - SQLite doesn't support RLS
    conn = op.get_bind()
    if conn.dialect.name != "postgresql":
        return

    op.execute("ALTER TABLE membership_quotas ENABLE ROW LEVEL SECURITY")
    op.execute("ALTER TABLE cooldown_flags ENABLE ROW LEVEL SECURITY")

    op.execute(
        """
        CREATE POLICY "Principals see own membership" ON membership_quotas
        FOR SELECT USING (
            principal_id = current_setting('request.jwt.claims', true)::json->>'sub'
        )
        """
    )
    op.execute(
        """
        CREATE POLICY "Owners see own flags" ON cooldown_flags
        FOR SELECT USING (
            owner_id = current_setting('request.jwt.claims', true)::json->>'sub'
        )
        """
    )


def downgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name == "postgresql":
        op.execute('DROP POLICY IF EXISTS "Owners see own flags" ON cooldown_flags')
        op.execute('DROP POLICY IF EXISTS "Principals see own membership" ON membership_quotas')

    with op.batch_alter_table("cooldown_flags", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_cooldown_flags_owner_id"))
    op.drop_table("cooldown_flags")

    with op.batch_alter_table("membership_quotas", schema=None) as batch_op:
        batch_op.drop_index(batch_op.f("ix_membership_quotas_daily_reset_at"))
        batch_op.drop_index(batch_op.f("ix_membership_quotas_monthly_reset_at"))
        batch_op.drop_index(batch_op.f("ix_membership_quotas_level"))
    op.drop_table("membership_quotas")
