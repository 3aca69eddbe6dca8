"""Tenants, forests, trees, people, relationships and person images

Revision ID: 3f6c1d2e9a10
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3f6c1d2e9a10"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="Visitor"),
        sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id"), nullable=True),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "forests",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("tenant_id", sa.String(length=36), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_forests_tenant_id", "forests", ["tenant_id"])

    op.create_table(
        "trees",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("forest_id", sa.String(length=36), sa.ForeignKey("forests.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.String(length=36), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_trees_forest_id", "trees", ["forest_id"])

    op.create_table(
        "people",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("tree_id", sa.String(length=36), sa.ForeignKey("trees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("first_name", sa.String(length=255), nullable=False),
        sa.Column("middle_name", sa.String(length=255), nullable=True),
        sa.Column("last_name", sa.String(length=255), nullable=True),
        sa.Column("maiden_name", sa.String(length=255), nullable=True),
        sa.Column("gender", sa.String(length=50), nullable=True),
        sa.Column("birth_date", sa.String(length=255), nullable=True),
        sa.Column("birth_place", sa.String(length=255), nullable=True),
        sa.Column("death_date", sa.String(length=255), nullable=True),
        sa.Column("death_place", sa.String(length=255), nullable=True),
        sa.Column("biography", sa.Text(), nullable=True),
        sa.Column("photo_url", sa.String(length=500), nullable=True),
        sa.Column("position_x", sa.Float(), nullable=False, server_default="0"),
        sa.Column("position_y", sa.Float(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_people_tree", "people", ["tree_id"])

    op.create_table(
        "relationships",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("tree_id", sa.String(length=36), sa.ForeignKey("trees.id", ondelete="CASCADE"), nullable=False),
        sa.Column("person1_id", sa.String(length=36), sa.ForeignKey("people.id", ondelete="CASCADE"), nullable=False),
        sa.Column("person2_id", sa.String(length=36), sa.ForeignKey("people.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("start_date", sa.String(length=255), nullable=True),
        sa.Column("end_date", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_relationships_tree", "relationships", ["tree_id"])
    op.create_index("idx_relationships_person1", "relationships", ["person1_id"])
    op.create_index("idx_relationships_person2", "relationships", ["person2_id"])

    op.create_table(
        "person_images",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("person_id", sa.String(length=36), sa.ForeignKey("people.id", ondelete="CASCADE"), nullable=False),
        sa.Column("image_url", sa.String(length=500), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
    )
    op.create_index("idx_person_images_person", "person_images", ["person_id"], if_not_exists=True)


def downgrade() -> None:
    op.drop_index("idx_person_images_person", table_name="person_images")
    op.drop_table("person_images")
    op.drop_index("idx_relationships_person2", table_name="relationships")
    op.drop_index("idx_relationships_person1", table_name="relationships")
    op.drop_index("idx_relationships_tree", table_name="relationships")
    op.drop_table("relationships")
    op.drop_index("idx_people_tree", table_name="people")
    op.drop_table("people")
    op.drop_index("ix_trees_forest_id", table_name="trees")
    op.drop_table("trees")
    op.drop_index("ix_forests_tenant_id", table_name="forests")
    op.drop_table("forests")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("tenants")
