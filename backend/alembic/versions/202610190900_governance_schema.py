"""Initial ActionGate governance schema."""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _timestamp(name: str, nullable: bool = False, with_default: bool = True) -> sa.Column:
    kwargs = {"server_default": sa.text("now()")} if with_default else {}
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable, **kwargs)


def upgrade() -> None:
    op.create_table(
        "tenants",
        _uuid("id", primary_key=True, nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default=sa.text("'UTC'")),
        _timestamp("created_at"),
    )

    op.create_table(
        "staff",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_staff_tenant_id", "staff", ["tenant_id"], unique=False)

    op.create_table(
        "autonomy_configs",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("autonomy_level", sa.String(length=16), nullable=False),
        sa.Column(
            "constraints",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("required_role", sa.String(length=32), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "action_type", name="uq_autonomy_configs_tenant_type"),
    )

    op.create_table(
        "action_cards",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("category", sa.String(length=64), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("50")),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("suggested_action", sa.Text(), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("autonomy_level", sa.String(length=16), nullable=False),
        sa.Column(
            "action_payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("dispatch_state", sa.String(length=16), nullable=True),
        sa.Column("external_ref", sa.Text(), nullable=True),
        sa.Column("last_dispatch_error", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        _timestamp("expires_at", nullable=True, with_default=False),
        _timestamp("created_at"),
        _timestamp("resolved_at", nullable=True, with_default=False),
        _uuid("resolved_by", nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_action_cards_tenant_status", "action_cards", ["tenant_id", "status"], unique=False)
    op.create_index("ix_action_cards_status_expires_at", "action_cards", ["status", "expires_at"], unique=False)

    op.create_table(
        "rate_counters",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("day", sa.Date(), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("window_start", with_default=False),
        _timestamp("window_end", with_default=False),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("tenant_id", "action_type", "day", name="uq_rate_counters_tenant_type_day"),
    )

    op.create_table(
        "action_history",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("tenant_id", nullable=False),
        sa.Column("actor_type", sa.String(length=16), nullable=False),
        _uuid("actor_id", nullable=True),
        sa.Column("actor_name", sa.Text(), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=32), nullable=False),
        _uuid("entity_id", nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("diff", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_action_history_tenant_created", "action_history", ["tenant_id", "created_at"], unique=False)
    op.create_index("ix_action_history_entity", "action_history", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "agent_feedback",
        _uuid("id", primary_key=True, nullable=False),
        _uuid("tenant_id", nullable=False),
        _uuid("action_card_id", nullable=False),
        sa.Column("action_type", sa.String(length=64), nullable=False),
        sa.Column("rating", sa.String(length=16), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _uuid("staff_id", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["action_card_id"], ["action_cards.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("action_card_id", name="uq_agent_feedback_action_card_id"),
    )
    op.create_index("ix_agent_feedback_tenant_type", "agent_feedback", ["tenant_id", "action_type"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_agent_feedback_tenant_type", table_name="agent_feedback")
    op.drop_table("agent_feedback")
    op.drop_index("ix_action_history_entity", table_name="action_history")
    op.drop_index("ix_action_history_tenant_created", table_name="action_history")
    op.drop_table("action_history")
    op.drop_table("rate_counters")
    op.drop_index("ix_action_cards_status_expires_at", table_name="action_cards")
    op.drop_index("ix_action_cards_tenant_status", table_name="action_cards")
    op.drop_table("action_cards")
    op.drop_table("autonomy_configs")
    op.drop_index("ix_staff_tenant_id", table_name="staff")
    op.drop_table("staff")
    op.drop_table("tenants")
