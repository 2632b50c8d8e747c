"""
src/DB/session.py
======================================
Database Session Configuration Module
======================================

SQLAlchemy engine and session factory shared by the repositories, the
TripStore worker threads, the trip-change listener and the backfill tooling.

Usage Example:
-------------
    from src.DB.session import SessionLocal

    with SessionLocal() as db:
        trips = list_active_trips(db)

Session Configuration:
---------------------
- autocommit=False: Repositories commit explicitly after each write
- autoflush=False: No implicit flush before queries
- expire_on_commit=False: Returned ORM objects stay readable after the
  session is closed (TripStore hands them across threads)
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from src.Core.config import settings


# ============================================================
# DATABASE ENGINE CONFIGURATION
# ============================================================
# pool_pre_ping drops stale connections before a worker thread uses them
engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)


# ============================================================
# SESSION FACTORY CONFIGURATION
# ============================================================
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine
)
