"""
src/DB/base_class.py
=================================
SQLAlchemy Base Model Definition
=================================

Declarative base shared by every model of the trip monitoring schema.

Convention:
----------
Table names default to the lowercase class name. Models that map onto the
planning tables owned upstream (route_plans, assigned_customers,
trip_coordinates) override __tablename__ explicitly.
"""

from sqlalchemy.orm import DeclarativeBase, declared_attr


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models in the application.
    """

    @declared_attr.directive
    def __tablename__(cls) -> str:
        return cls.__name__.lower()
