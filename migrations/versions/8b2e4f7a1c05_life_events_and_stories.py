"""Life events and stories

Revision ID: 8b2e4f7a1c05
Revises: 3f6c1d2e9a10
Create Date: 2026-10-17 12:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "8b2e4f7a1c05"
down_revision = "3f6c1d2e9a10"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "life_events",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("person_id", sa.String(length=36), sa.ForeignKey("people.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("event_date", sa.String(length=255), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_life_events_person", "life_events", ["person_id"])

    op.create_table(
        "stories",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("person_id", sa.String(length=36), sa.ForeignKey("people.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tree_id", sa.String(length=36), sa.ForeignKey("trees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("author_id", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_stories_person", "stories", ["person_id"])
    op.create_index("idx_stories_tree", "stories", ["tree_id"])


def downgrade() -> None:
    op.drop_index("idx_stories_tree", table_name="stories")
    op.drop_index("idx_stories_person", table_name="stories")
    op.drop_table("stories")
    op.drop_index("idx_life_events_person", table_name="life_events")
    op.drop_table("life_events")
