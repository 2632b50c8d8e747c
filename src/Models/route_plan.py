# src/Models/route_plan.py
from sqlalchemy import Column, String, Float, Integer, DateTime, CheckConstraint, Index
from sqlalchemy.sql import func
from sqlalchemy.orm import declared_attr
from src.DB.base_class import Base


class RoutePlan(Base):
    """
    SQLAlchemy model for a planned trip (one vehicle, an ordered set of customers).

    Rows are created upstream by route planning. The monitor only writes the
    actual_* columns:
    - actual_start_time: set once, on the first movement of the vehicle
    - actual_end_time: set once, when every assigned customer is completed

    Lifecycle (derived, not stored):
    - PLANNED: actual_start_time IS NULL
    - ACTIVE: actual_start_time set, actual_end_time IS NULL
    - COMPLETED: actual_end_time set (terminal)

    Related models:
    - AssignedCustomer (1:N)
    - TripCoordinate (1:N)
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "route_plans"

    # ========================================
    # PRIMARY KEY
    # ========================================
    trip_id = Column(
        String(100),
        primary_key=True,
        doc="Trip identifier assigned by route planning"
    )

    # ========================================
    # PLANNING DATA (written upstream)
    # ========================================
    vehicle_plate = Column(
        String(20),
        nullable=False,
        index=True,
        doc="Plate of the vehicle assigned to this trip"
    )

    route_name = Column(String(200), nullable=True)

    total_stops = Column(Integer, nullable=True)

    estimated_duration_minutes = Column(Float, nullable=True)

    # ========================================
    # ACTUAL TIMING (written by the monitor)
    # ========================================
    actual_start_time = Column(
        DateTime(timezone=True),
        nullable=True,
        doc="UTC time the vehicle first moved (NULL while PLANNED)"
    )

    actual_end_time = Column(
        DateTime(timezone=True),
        nullable=True,
        doc="UTC time the last customer was completed (NULL until COMPLETED)"
    )

    actual_duration_minutes = Column(
        Float,
        nullable=True,
        doc="actual_end_time - actual_start_time, in minutes"
    )

    # ========================================
    # AUDIT FIELDS
    # ========================================
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index('idx_route_plans_plate_open', 'vehicle_plate', 'actual_end_time'),
        CheckConstraint(
            "actual_end_time IS NULL OR actual_start_time IS NOT NULL",
            name='check_end_requires_start'
        ),
    )

    @property
    def state(self) -> str:
        if self.actual_end_time is not None:
            return "completed"
        if self.actual_start_time is not None:
            return "active"
        return "planned"

    def __repr__(self) -> str:
        return (
            f"<RoutePlan(trip_id={self.trip_id!r}, vehicle_plate={self.vehicle_plate!r}, "
            f"state={self.state!r})>"
        )
