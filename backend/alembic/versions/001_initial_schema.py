"""Initial schema: users, tours, bookings with indexes and constraints.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("roles", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Tours table
    op.create_table(
        "tours",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("short_description", sa.String(300), nullable=False, server_default=""),
        sa.Column("full_description", sa.Text(), nullable=False, server_default=""),
        sa.Column("start_location", sa.String(120), nullable=True),
        sa.Column("end_location", sa.String(120), nullable=True),
        sa.Column("start_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_datetime", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("participants_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("price_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(8), nullable=False, server_default="NOK"),
        sa.Column("difficulty", sa.String(20), nullable=False, server_default="MODERATE"),
        sa.Column("status", sa.String(20), nullable=False, server_default="DRAFT"),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        # CAPACITY INVARIANT AT THE DATABASE LEVEL:
        # 0 <= participants_count <= max_participants even if a writer bypasses the service.
        sa.CheckConstraint("max_participants >= 1", name="check_tour_max_participants_positive"),
        sa.CheckConstraint("participants_count >= 0", name="check_tour_participants_non_negative"),
        sa.CheckConstraint("participants_count <= max_participants", name="check_tour_participants_lte_max"),
        sa.CheckConstraint("end_datetime > start_datetime", name="check_tour_schedule"),
        sa.CheckConstraint("status IN ('DRAFT', 'PUBLISHED', 'FULL', 'CANCELLED')", name="check_tour_status"),
    )
    op.create_index("ix_tours_id", "tours", ["id"])
    op.create_index("ix_tours_created_by", "tours", ["created_by"])
    # Public listing: WHERE status IN ('PUBLISHED', 'FULL') ORDER BY start_datetime
    op.create_index("ix_tours_status_start", "tours", ["status", "start_datetime"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("tour_id", sa.Integer(), sa.ForeignKey("tours.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="CONFIRMED"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("status IN ('CONFIRMED', 'CANCELLED')", name="check_booking_status"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_tour_id", "bookings", ["tour_id"])
    # DOUBLE-BOOKING GUARD: at most one CONFIRMED row per (user, tour).
    # Partial, so cancelled history rows never block booking again.
    op.create_index(
        "uq_bookings_user_tour_confirmed",
        "bookings",
        ["user_id", "tour_id"],
        unique=True,
        postgresql_where=sa.text("status = 'CONFIRMED'"),
        sqlite_where=sa.text("status = 'CONFIRMED'"),
    )


def downgrade() -> None:
    op.drop_table("bookings")
    op.drop_table("tours")
    op.drop_table("users")
