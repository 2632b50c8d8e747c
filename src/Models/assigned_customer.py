# src/Models/assigned_customer.py
from sqlalchemy import (
    Column, String, Float, Integer, Boolean, DateTime,
    ForeignKey, CheckConstraint, Index, false
)
from sqlalchemy.orm import declared_attr
from src.DB.base_class import Base


class AssignedCustomer(Base):
    """
    SQLAlchemy model for one customer stop of a trip.

    Identity is the composite (trip_id, customer_code). The monitor flips
    `completed` from false to true when the vehicle comes within the
    completion radius; it never sets it back.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "assigned_customers"

    trip_id = Column(
        String(100),
        ForeignKey('route_plans.trip_id', ondelete='CASCADE'),
        primary_key=True
    )

    customer_code = Column(String(100), primary_key=True)

    customer_name = Column(String(200), nullable=True)

    sequence_order = Column(Integer, nullable=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    completed = Column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false()
    )

    completed_at = Column(
        DateTime(timezone=True),
        nullable=True,
        doc="Completion time (live: wall clock, backfill: nearest logged sample)"
    )

    __table_args__ = (
        Index('idx_assigned_customers_trip_completed', 'trip_id', 'completed'),
        CheckConstraint(
            "latitude >= -90 AND latitude <= 90",
            name='check_customer_lat_range'
        ),
        CheckConstraint(
            "longitude >= -180 AND longitude <= 180",
            name='check_customer_lon_range'
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<AssignedCustomer(trip_id={self.trip_id!r}, customer_code={self.customer_code!r}, "
            f"completed={self.completed!r})>"
        )
