"""create_trip_monitoring_tables

Revision ID: 3f2a9c7d1e04
Revises:
Create Date: 2025-12-01 09:00:00

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f2a9c7d1e04'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


NOTIFY_CHANNEL = "trip_changes"


def upgrade() -> None:
    """
    Create the trip monitoring tables and their triggers.

    Tables:
    - route_plans: trips (written upstream, actual_* columns by the monitor)
    - assigned_customers: customer stops per trip
    - trip_coordinates: append-only position log
    - trip_completion_audit: one row per closed trip

    Triggers:
    - trigger_auto_completed_at: fills completed_at when a stop flips to
      completed without an explicit time, clears it when un-completed
    - trigger_route_plans_notify: pg_notify on trip creation and on
      actual_end_time being set (feeds the monitor's registry)
    """
    print("[MIGRATION] Creating trip monitoring tables...")

    op.create_table(
        'route_plans',
        sa.Column('trip_id', sa.String(length=100), primary_key=True),
        sa.Column('vehicle_plate', sa.String(length=20), nullable=False),
        sa.Column('route_name', sa.String(length=200), nullable=True),
        sa.Column('total_stops', sa.Integer(), nullable=True),
        sa.Column('estimated_duration_minutes', sa.Float(), nullable=True),
        sa.Column('actual_start_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('actual_duration_minutes', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint(
            'actual_end_time IS NULL OR actual_start_time IS NOT NULL',
            name='check_end_requires_start'
        ),
    )
    op.create_index('ix_route_plans_vehicle_plate', 'route_plans', ['vehicle_plate'])
    op.create_index('idx_route_plans_plate_open', 'route_plans', ['vehicle_plate', 'actual_end_time'])

    op.create_table(
        'assigned_customers',
        sa.Column('trip_id', sa.String(length=100),
                  sa.ForeignKey('route_plans.trip_id', ondelete='CASCADE'), primary_key=True),
        sa.Column('customer_code', sa.String(length=100), primary_key=True),
        sa.Column('customer_name', sa.String(length=200), nullable=True),
        sa.Column('sequence_order', sa.Integer(), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('completed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('latitude >= -90 AND latitude <= 90', name='check_customer_lat_range'),
        sa.CheckConstraint('longitude >= -180 AND longitude <= 180', name='check_customer_lon_range'),
    )
    op.create_index('idx_assigned_customers_trip_completed', 'assigned_customers', ['trip_id', 'completed'])

    op.create_table(
        'trip_coordinates',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('trip_id', sa.String(length=100), nullable=False),
        sa.Column('vehicle_plate', sa.String(length=20), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('speed', sa.Float(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_trip_coordinates_trip_id', 'trip_coordinates', ['trip_id'])
    op.create_index('idx_trip_coordinates_trip_time', 'trip_coordinates', ['trip_id', 'timestamp'])

    op.create_table(
        'trip_completion_audit',
        sa.Column('id', sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column('trip_id', sa.String(length=100), nullable=False, unique=True),
        sa.Column('vehicle_plate', sa.String(length=20), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_minutes', sa.Float(), nullable=True),
        sa.Column('customers_total', sa.Integer(), nullable=False),
        sa.Column('customers_completed', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )

    print("[MIGRATION] Creating completed_at trigger...")

    op.execute("""
        CREATE OR REPLACE FUNCTION auto_set_completed_at()
        RETURNS TRIGGER AS $$
        BEGIN
          IF NEW.completed = true AND (OLD.completed = false OR OLD.completed IS NULL)
             AND NEW.completed_at IS NULL THEN
            NEW.completed_at = NOW();
          END IF;

          IF NEW.completed = false AND OLD.completed = true THEN
            NEW.completed_at = NULL;
          END IF;

          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trigger_auto_completed_at
          BEFORE UPDATE ON assigned_customers
          FOR EACH ROW
          EXECUTE FUNCTION auto_set_completed_at();
    """)

    print("[MIGRATION] Creating trip-change notification trigger...")

    op.execute(f"""
        CREATE OR REPLACE FUNCTION notify_trip_change()
        RETURNS TRIGGER AS $$
        BEGIN
          IF TG_OP = 'INSERT' THEN
            PERFORM pg_notify('{NOTIFY_CHANNEL}', json_build_object(
              'type', 'created', 'trip_id', NEW.trip_id, 'plate', NEW.vehicle_plate
            )::text);
          ELSIF NEW.actual_end_time IS NOT NULL AND OLD.actual_end_time IS NULL THEN
            PERFORM pg_notify('{NOTIFY_CHANNEL}', json_build_object(
              'type', 'ended', 'trip_id', NEW.trip_id, 'plate', NEW.vehicle_plate
            )::text);
          END IF;
          RETURN NEW;
        END;
        $$ LANGUAGE plpgsql;
    """)
    op.execute("""
        CREATE TRIGGER trigger_route_plans_notify
          AFTER INSERT OR UPDATE OF actual_end_time ON route_plans
          FOR EACH ROW
          EXECUTE FUNCTION notify_trip_change();
    """)

    print("[MIGRATION] ✅ Trip monitoring schema created successfully")


def downgrade() -> None:
    print("[MIGRATION] Removing trip monitoring schema...")

    op.execute("DROP TRIGGER IF EXISTS trigger_route_plans_notify ON route_plans;")
    op.execute("DROP FUNCTION IF EXISTS notify_trip_change();")
    op.execute("DROP TRIGGER IF EXISTS trigger_auto_completed_at ON assigned_customers;")
    op.execute("DROP FUNCTION IF EXISTS auto_set_completed_at();")

    op.drop_table('trip_completion_audit')
    op.drop_index('idx_trip_coordinates_trip_time', table_name='trip_coordinates')
    op.drop_index('ix_trip_coordinates_trip_id', table_name='trip_coordinates')
    op.drop_table('trip_coordinates')
    op.drop_index('idx_assigned_customers_trip_completed', table_name='assigned_customers')
    op.drop_table('assigned_customers')
    op.drop_index('idx_route_plans_plate_open', table_name='route_plans')
    op.drop_index('ix_route_plans_vehicle_plate', table_name='route_plans')
    op.drop_table('route_plans')

    print("[MIGRATION] ❌ Trip monitoring schema removed")
