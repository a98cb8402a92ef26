"""initial_schema

Creates the station directory, monitored routes with their ordered stations,
per-route disruptions and the per-route badge status.

Revision ID: 4b1e9c2d7a10
Revises:
Create Date: 2026-10-19 09:12:44.518203

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4b1e9c2d7a10"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "stations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False, comment="Short station code, e.g. 'ASD'"),
        sa.Column("uic_code", sa.String(length=20), nullable=False),
        sa.Column("name_long", sa.String(length=255), nullable=False),
        sa.Column("name_medium", sa.String(length=255), nullable=False),
        sa.Column("name_short", sa.String(length=100), nullable=False),
        sa.Column("synonyms", sa.JSON(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("country", sa.String(length=5), nullable=False),
        sa.Column("last_updated", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_stations_code"), "stations", ["code"], unique=True)
    op.create_index(op.f("ix_stations_uic_code"), "stations", ["uic_code"], unique=False)
    op.create_index(op.f("ix_stations_name_long"), "stations", ["name_long"], unique=False)

    op.create_table(
        "routes",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("origin_code", sa.String(length=20), nullable=False),
        sa.Column("origin_name", sa.String(length=255), nullable=False),
        sa.Column("destination_code", sa.String(length=20), nullable=False),
        sa.Column("destination_name", sa.String(length=255), nullable=False),
        sa.Column("schedule_days", sa.JSON(), nullable=False),
        sa.Column("departure_time", sa.String(length=5), nullable=False, comment="Local departure time as HH:MM"),
        sa.Column("urgency_level", sa.String(length=20), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "route_stations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("route_id", sa.Uuid(), nullable=False),
        sa.Column("station_code", sa.String(length=20), nullable=False),
        sa.Column("station_name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["route_id"], ["routes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("route_id", "position", name="uq_route_station_position"),
    )
    op.create_index(op.f("ix_route_stations_route_id"), "route_stations", ["route_id"], unique=False)

    op.create_table(
        "route_statuses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("route_id", sa.Uuid(), nullable=False),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("has_active_disruptions", sa.Boolean(), nullable=False),
        sa.Column("changed_since_last_view", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["route_id"], ["routes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("route_id"),
    )

    op.create_table(
        "disruptions",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("route_id", sa.Uuid(), nullable=False),
        sa.Column(
            "external_disruption_id",
            sa.String(length=100),
            nullable=False,
            comment="Disruption id from the NS feed",
        ),
        sa.Column("type", sa.String(length=20), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("period", sa.String(length=255), nullable=False),
        sa.Column("advice", sa.Text(), nullable=True),
        sa.Column("affected_stations", sa.JSON(), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("content_hash", sa.String(length=16), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["route_id"], ["routes.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("route_id", "external_disruption_id", name="uq_disruption_route_external"),
    )
    op.create_index("ix_disruptions_route_active", "disruptions", ["route_id", "is_active"], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index("ix_disruptions_route_active", table_name="disruptions")
    op.drop_table("disruptions")
    op.drop_table("route_statuses")
    op.drop_index(op.f("ix_route_stations_route_id"), table_name="route_stations")
    op.drop_table("route_stations")
    op.drop_table("routes")
    op.drop_index(op.f("ix_stations_name_long"), table_name="stations")
    op.drop_index(op.f("ix_stations_uic_code"), table_name="stations")
    op.drop_index(op.f("ix_stations_code"), table_name="stations")
    op.drop_table("stations")
