"""
src/DB/base.py
==========================
SQLAlchemy Model Registry
==========================

Imports every model so that Base.metadata is complete before Alembic
autogenerates migrations or a test suite calls create_all().

Models Registered:
-----------------
- RoutePlan: Trips produced by route planning (start/end bookkeeping)
- AssignedCustomer: Customer stops of a trip (geofence completion state)
- TripCoordinate: Append-only log of vehicle positions during a trip
- TripCompletionAudit: One row per trip closed by the monitor

Any new model class MUST be imported here.
"""

from src.DB.base_class import Base

# ============================================================
# MODEL IMPORTS - DO NOT REMOVE
# ============================================================
from src.Models.route_plan import RoutePlan
from src.Models.assigned_customer import AssignedCustomer
from src.Models.trip_coordinate import TripCoordinate
from src.Models.trip_completion_audit import TripCompletionAudit
