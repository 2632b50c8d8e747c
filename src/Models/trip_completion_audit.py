# src/Models/trip_completion_audit.py
from sqlalchemy import Column, BigInteger, Integer, String, Float, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import declared_attr
from src.DB.base_class import Base


class TripCompletionAudit(Base):
    """
    Audit record written by the aggregate trip-completion operation.

    Exactly one row per closed trip (trip_id is unique).
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "trip_completion_audit"

    id = Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)

    trip_id = Column(String(100), nullable=False, unique=True)

    vehicle_plate = Column(String(20), nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=False)

    duration_minutes = Column(Float, nullable=True)

    customers_total = Column(Integer, nullable=False)
    customers_completed = Column(Integer, nullable=False)

    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
