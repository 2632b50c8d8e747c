# src/Models/trip_coordinate.py
from sqlalchemy import Column, BigInteger, Integer, String, Float, DateTime, Index
from sqlalchemy.orm import declared_attr
from src.DB.base_class import Base


class TripCoordinate(Base):
    """
    Append-only log of vehicle positions recorded while a trip is ACTIVE.

    The live monitor never reads this table; the backfill tooling does.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return "trip_coordinates"

    id = Column(BigInteger().with_variant(Integer(), "sqlite"), primary_key=True, autoincrement=True)

    trip_id = Column(String(100), nullable=False, index=True)

    vehicle_plate = Column(String(20), nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    speed = Column(Float, nullable=False, default=0.0)

    timestamp = Column(
        DateTime(timezone=True),
        nullable=False,
        doc="Device LocTime when parsable, otherwise reception time"
    )

    __table_args__ = (
        Index('idx_trip_coordinates_trip_time', 'trip_id', 'timestamp'),
    )
