"""Initial schema: experts, tasks, invites.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "experts",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("name", sa.VARCHAR(), nullable=False),
        sa.Column("key_hash", sa.VARCHAR(), nullable=False, server_default=""),
        sa.Column("key_fingerprint", sa.VARCHAR(), nullable=False, server_default=""),
        sa.Column("subjects", sa.VARCHAR(), nullable=False, server_default="[]"),
        sa.Column("min_price", sa.FLOAT(), nullable=True),
        sa.Column("max_price", sa.FLOAT(), nullable=True),
        sa.Column("level", sa.VARCHAR(), nullable=False, server_default="UG"),
        sa.Column("rating_avg", sa.FLOAT(), nullable=False, server_default="0.0"),
        sa.Column("rating_count", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("accept_rate", sa.FLOAT(), nullable=False, server_default="0.5"),
        sa.Column("median_response_minutes", sa.FLOAT(), nullable=False, server_default="60.0"),
        sa.Column("completed_by_subject", sa.VARCHAR(), nullable=False, server_default="{}"),
        sa.Column("webhook_url", sa.VARCHAR(), nullable=True),
        sa.Column("webhook_secret", sa.VARCHAR(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_experts_key_fingerprint", "experts", ["key_fingerprint"])
    op.create_index("ix_experts_rating", "experts", ["rating_avg", "rating_count"])

    op.create_table(
        "tasks",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("poster_id", sa.VARCHAR(), nullable=True),
        sa.Column("title", sa.VARCHAR(), nullable=False, server_default=""),
        sa.Column("description", sa.VARCHAR(), nullable=True),
        sa.Column("subject", sa.VARCHAR(), nullable=False),
        sa.Column("price", sa.FLOAT(), nullable=False),
        sa.Column("deadline_at", sa.DATETIME(), nullable=True),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="open"),
        sa.Column("reserved_by", sa.VARCHAR(), nullable=True),
        sa.Column("reserved_until", sa.DATETIME(), nullable=True),
        sa.Column("expert_id", sa.VARCHAR(), nullable=True),
        sa.Column("invited_now", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("current_wave", sa.INTEGER(), nullable=False, server_default="0"),
        sa.Column("next_wave_at", sa.DATETIME(), nullable=True),
        sa.Column("created_at", sa.DATETIME(), nullable=False),
        sa.Column("updated_at", sa.DATETIME(), nullable=False),
        sa.Column("claimed_at", sa.DATETIME(), nullable=True),
        sa.ForeignKeyConstraint(["reserved_by"], ["experts.id"]),
        sa.ForeignKeyConstraint(["expert_id"], ["experts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tasks_poster_id", "tasks", ["poster_id"])
    op.create_index("ix_tasks_subject", "tasks", ["subject"])
    op.create_index("ix_tasks_status", "tasks", ["status"])
    op.create_index("ix_tasks_reserved_by", "tasks", ["reserved_by"])
    op.create_index("ix_tasks_expert_id", "tasks", ["expert_id"])
    op.create_index("ix_tasks_status_reserved_until", "tasks", ["status", "reserved_until"])
    op.create_index("ix_tasks_status_next_wave_at", "tasks", ["status", "next_wave_at"])

    op.create_table(
        "invites",
        sa.Column("id", sa.VARCHAR(), nullable=False),
        sa.Column("task_id", sa.VARCHAR(), nullable=False),
        sa.Column("expert_id", sa.VARCHAR(), nullable=False),
        sa.Column("wave", sa.INTEGER(), nullable=False, server_default="1"),
        sa.Column("score", sa.FLOAT(), nullable=False, server_default="0.0"),
        sa.Column("status", sa.VARCHAR(), nullable=False, server_default="sent"),
        sa.Column("sent_at", sa.DATETIME(), nullable=False),
        sa.Column("responded_at", sa.DATETIME(), nullable=True),
        sa.ForeignKeyConstraint(["task_id"], ["tasks.id"]),
        sa.ForeignKeyConstraint(["expert_id"], ["experts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_invites_task_id", "invites", ["task_id"])
    op.create_index("ix_invites_expert_id", "invites", ["expert_id"])
    op.create_index("ix_invites_status", "invites", ["status"])
    op.create_index("ix_invites_task_expert", "invites", ["task_id", "expert_id"], unique=True)


def downgrade() -> None:
    op.drop_table("invites")
    op.drop_table("tasks")
    op.drop_table("experts")
