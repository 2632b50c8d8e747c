"""
src/main.py
============================================
FastAPI Application for Trip Monitoring
============================================

Entry point of the real-time trip monitoring service. Telemetry arrives over
UDP (or POST /monitor/telemetry), trip-created / trip-ended notifications
arrive over PostgreSQL LISTEN/NOTIFY (or POST /monitor/trip_events), and
TripMonitor turns both into trip starts, customer stop completions and trip
closures.

Architecture Overview:
---------------------
- TripMonitor: one asyncio worker per vehicle, registry of monitored trips
- UDP Server: daemon thread handing telemetry records to the event loop
- Notification Listener: daemon thread handing trip changes to the event loop
- REST API: monitor status and trip data under /monitor
- WebSocket: monitoring events streamed via /logs
"""

# Environment Configuration
from dotenv import load_dotenv
import os
load_dotenv()

# FastAPI Core
from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import asyncio

from src.Core.config import settings
from src.Core.errors import ExternalWriteFailure
from src.Controller.Routes import monitor

# WebSocket Management (monitoring logs)
from src.Core import log_ws

# Monitoring engine and transports
from src.Services.trip_monitor import trip_monitor
from src.Services.trip_notifications import start_notification_listener
from src.Services.udp import start_udp_server


def _parse_origins(csv_value: str):
    """
    Parse comma-separated origin values into (is_wildcard, origins).

    Examples:
        "*" → (True, ["*"])
        "https://ops.example.com,https://admin.example.com" → (False, [...])
        "" → (False, [])
    """
    if not csv_value:
        return (False, [])

    csv_value = csv_value.strip()

    if csv_value == "*":
        return (True, ["*"])

    origins = [origin.strip() for origin in csv_value.split(",") if origin.strip()]
    return (False, origins)


_http_allow_all, _http_origins = _parse_origins(
    os.getenv("HTTP_ALLOWED_ORIGINS", "*")
)
_ws_allow_all, _ws_origins = _parse_origins(
    os.getenv("WS_ALLOWED_ORIGINS", "*")
)


# ============================================================
# APPLICATION LIFESPAN MANAGEMENT
# ============================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup Sequence:
        1. Configure event loop for the log WebSocket manager
        2. Rebuild the monitored-trip registry from the database
        3. Start the UDP telemetry server
        4. Start the trip-change notification listener

    Reconciliation completes before any transport starts, so no telemetry
    is evaluated against an empty registry.

    Shutdown Sequence:
        - Notification listener is asked to stop
        - Vehicle workers are cancelled
        - UDP thread terminates with the process (daemon mode)
    """

    # ========================================
    # STARTUP: Configure WebSocket Event Loop
    # ========================================
    loop = asyncio.get_running_loop()
    log_ws.log_ws_manager.set_main_loop(loop)

    # ========================================
    # STARTUP: Reconcile Monitored Trips
    # ========================================
    try:
        await trip_monitor.reconcile()
    except ExternalWriteFailure as e:
        print(f"[STARTUP] ❌ Trip reconciliation failed: {e}")
        raise

    # ========================================
    # STARTUP: Initialize Transports
    # ========================================
    if settings.UDP_ENABLED:
        print("[SERVICES] Starting UDP server for telemetry reception...")
        start_udp_server(trip_monitor)
    else:
        print("[SERVICES] ⚠️  UDP service is disabled")

    listener = None
    if settings.NOTIFY_ENABLED:
        print(f"[SERVICES] Starting trip-change listener on '{settings.NOTIFY_CHANNEL}'...")
        listener = start_notification_listener(trip_monitor)
    else:
        print("[SERVICES] ⚠️  Trip-change notifications are disabled")

    print("[STARTUP] ✅ Application initialization complete")

    # Application runtime
    yield

    # ========================================
    # SHUTDOWN: Cleanup
    # ========================================
    print("[SHUTDOWN] 🛑 Application shutdown initiated")
    if listener is not None:
        listener.stop()
    await trip_monitor.shutdown()


# ============================================================
# APPLICATION INSTANCE CREATION
# ============================================================
app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.PROJECT_VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_http_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================
# HEALTH CHECK ENDPOINT
# ============================================================
@app.get("/health")
def health():
    """
    Health check for the load balancer.

    The "reconciled" flag tells whether the registry was rebuilt.
    """
    return {"status": "ok", "reconciled": trip_monitor.reconciled}


# ============================================================
# REST API ROUTE REGISTRATION
# ============================================================
app.include_router(monitor.router, prefix="/monitor", tags=["monitor"])


# ============================================================
# WEBSOCKET ENDPOINTS
# ============================================================
async def socket_handler(ws: WebSocket, manager):
    """
    Generic WebSocket connection handler with origin validation.

    Connections from origins outside WS_ALLOWED_ORIGINS are closed with 403.
    """
    origin = ws.headers.get("origin")

    if (not _ws_allow_all) and (origin not in _ws_origins):
        print(f"[WS] ❌ Connection rejected - unauthorized origin: {origin}")
        await ws.close(code=403)
        return

    await manager.register(ws)

    try:
        while True:
            message = await ws.receive_text()
            await manager.handle_message(ws, message)
    except Exception as e:
        print(f"[WS] Connection closed: {e}")
    finally:
        manager.unregister(ws)


@app.websocket("/logs")
async def websocket_logs(ws: WebSocket):
    """
    WebSocket endpoint streaming monitoring events.

    Message Format:
        {
            "msg_type": "log" | "warning" | "error",
            "message": "[LIFECYCLE] Trip T-100 started - vehicle ABC123 moving at 42 km/h",
            "timestamp": "2025-12-01T10:30:00+00:00"
        }
    """
    await socket_handler(ws, log_ws.log_ws_manager)


# ============================================================
# API INFORMATION ENDPOINT
# ============================================================
@app.get("/api")
def api_info():
    """
    API information and system status endpoint.
    """
    status = trip_monitor.status()
    return {
        "status": "online",
        "version": settings.PROJECT_VERSION,
        "architecture": "UDP + LISTEN/NOTIFY → per-vehicle workers",
        "features": {
            "websockets": ["/logs"],
            "udp_enabled": settings.UDP_ENABLED,
            "notify_enabled": settings.NOTIFY_ENABLED,
            "live_completion_radius_km": settings.LIVE_COMPLETION_RADIUS_KM,
            "long_stop_minutes": settings.LONG_STOP_MINUTES
        },
        "monitor": {
            "monitored_trips": status.monitored_trips,
            "tracked_vehicles": status.tracked_vehicles,
            "open_stops": status.open_stops
        },
        "endpoints": {
            "monitor": "/monitor/*",
            "logs": "/logs (WebSocket)",
            "health": "/health"
        }
    }
