#src/Controller/deps.py

from typing import Generator
from src.DB.session import SessionLocal
from src.Services.trip_monitor import TripMonitor, trip_monitor

def get_DB() -> Generator:
    DB = SessionLocal()
    try:
        yield DB
    finally:
        DB.close()

def get_monitor() -> TripMonitor:
    return trip_monitor
