# src/Repositories/assigned_customer.py
"""
Assigned Customer Repository - Customer stops of a trip.

Completion is monotonic: mark_completed only touches rows that are still
incomplete and reports whether it changed anything, so a second call with
the same arguments is a no-op.
"""

from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from src.Models.assigned_customer import AssignedCustomer


# ==========================================================
# READ OPERATIONS
# ==========================================================

def list_by_trip(DB: Session, trip_id: str) -> list[AssignedCustomer]:
    return (
        DB.query(AssignedCustomer)
        .filter(AssignedCustomer.trip_id == trip_id)
        .order_by(AssignedCustomer.sequence_order.asc(), AssignedCustomer.customer_code.asc())
        .all()
    )


def list_incomplete(DB: Session, trip_id: str) -> list[AssignedCustomer]:
    return (
        DB.query(AssignedCustomer)
        .filter(
            AssignedCustomer.trip_id == trip_id,
            AssignedCustomer.completed.is_(False)
        )
        .order_by(AssignedCustomer.sequence_order.asc(), AssignedCustomer.customer_code.asc())
        .all()
    )


def list_completed(DB: Session, trip_id: str) -> list[AssignedCustomer]:
    """Completed stops that carry a completed_at (backfill input)."""
    return (
        DB.query(AssignedCustomer)
        .filter(
            AssignedCustomer.trip_id == trip_id,
            AssignedCustomer.completed.is_(True),
            AssignedCustomer.completed_at.isnot(None)
        )
        .order_by(AssignedCustomer.sequence_order.asc(), AssignedCustomer.customer_code.asc())
        .all()
    )


def count_total(DB: Session, trip_id: str) -> int:
    return (
        DB.query(func.count(AssignedCustomer.customer_code))
        .filter(AssignedCustomer.trip_id == trip_id)
        .scalar()
    ) or 0


def count_completed(DB: Session, trip_id: str) -> int:
    return (
        DB.query(func.count(AssignedCustomer.customer_code))
        .filter(
            AssignedCustomer.trip_id == trip_id,
            AssignedCustomer.completed.is_(True)
        )
        .scalar()
    ) or 0


# ==========================================================
# WRITE OPERATIONS
# ==========================================================

def mark_completed(DB: Session, trip_id: str, customer_code: str, completed_at: datetime) -> bool:
    """
    Flip a stop to completed.

    Returns:
        bool: True if the stop was incomplete and is now completed,
        False if it was already completed (or does not exist).
    """
    result = DB.execute(
        update(AssignedCustomer)
        .where(
            AssignedCustomer.trip_id == trip_id,
            AssignedCustomer.customer_code == customer_code,
            AssignedCustomer.completed.is_(False)
        )
        .values(completed=True, completed_at=completed_at)
    )
    DB.commit()
    return result.rowcount == 1


def set_completed_at(DB: Session, trip_id: str, customer_code: str, completed_at: datetime) -> bool:
    """
    Re-time an already completed stop (backfill). Incomplete stops are left alone.
    """
    result = DB.execute(
        update(AssignedCustomer)
        .where(
            AssignedCustomer.trip_id == trip_id,
            AssignedCustomer.customer_code == customer_code,
            AssignedCustomer.completed.is_(True)
        )
        .values(completed_at=completed_at)
    )
    DB.commit()
    return result.rowcount == 1
