"""
Log WebSocket Management Module
================================

Real-time streaming of monitoring events (trip starts, stop completions,
trip closures, rejected samples, failed writes) to WebSocket clients
connected on /logs.

Architecture:
------------
- Thread-Safe Broadcasting: log_from_thread() can be called from the event
  loop, the UDP listener thread or the notification listener thread
- Multiple Clients: any number of monitoring dashboards can connect
- Console First: every message is printed; broadcasting is best effort

Message Format:
--------------
    {
        "msg_type": "log" | "warning" | "error",
        "message": "[LIFECYCLE] Trip T-100 started (ABC123 moving at 42 km/h)",
        "timestamp": "2025-12-01T10:30:00+00:00"
    }

Usage Example:
-------------
    from src.Core import log_ws

    log_ws.log_from_thread("[GEOFENCE] Customer C-1 completed", msg_type="log")
    log_ws.log_from_thread("[STORE] mark_completed timed out", msg_type="error")
"""

import asyncio
import json
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import WebSocket


class WebSocketManager:
    """
    Thread-safe registry of WebSocket clients with broadcast support.

    Attributes:
        clients: Currently connected WebSockets
        main_loop: FastAPI's event loop, set during application startup
    """

    def __init__(self):
        self.clients: List[WebSocket] = []
        self.main_loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    def set_main_loop(self, loop: asyncio.AbstractEventLoop):
        """
        Register the running event loop so background threads can schedule
        broadcasts on it. Must be called from the lifespan handler.
        """
        self.main_loop = loop

    async def register(self, ws: WebSocket):
        """Accept the handshake and start broadcasting to this client."""
        with self._lock:
            if ws not in self.clients:
                self.clients.append(ws)

        try:
            await ws.accept()
            print(f"[LOG-WS] Client registered. Total clients: {len(self.clients)}")
        except Exception:
            self.unregister(ws)
            raise

    def unregister(self, ws: WebSocket):
        """Idempotent removal of a client."""
        with self._lock:
            if ws in self.clients:
                self.clients.remove(ws)
                print(f"[LOG-WS] Client unregistered. Total clients: {len(self.clients)}")

    @property
    def has_clients(self) -> bool:
        with self._lock:
            return len(self.clients) > 0

    async def broadcast(self, message: Dict[str, Any]):
        """
        Send a message to every client; clients that fail are dropped.

        The client list is copied under the lock and the lock is released
        before any I/O.
        """
        to_remove = []

        with self._lock:
            current_clients = list(self.clients)

        for ws in current_clients:
            try:
                await ws.send_text(json.dumps(message, default=str))
            except Exception:
                to_remove.append(ws)

        for ws in to_remove:
            self.unregister(ws)

    def send_from_thread(self, message: Dict[str, Any]):
        """
        Schedule a broadcast on the main loop from any thread.

        Fire and forget: the caller never waits for delivery.
        """
        if not self.has_clients or self.main_loop is None:
            return

        if self.main_loop.is_closed():
            return

        asyncio.run_coroutine_threadsafe(self.broadcast(message), self.main_loop)

    async def handle_message(self, ws: WebSocket, message: str):
        """
        Messages sent by log clients are informational only.
        """
        print(f"[LOG-WS] Received message from client: {message}")


def log_from_thread(message: str, msg_type: str = "log"):
    """
    Print a monitoring event and broadcast it to connected log clients.

    Args:
        message: Log line, conventionally prefixed with a [TAG]
        msg_type: "log", "warning" or "error"

    Safe to call from the event loop and from background threads.
    """
    print(message)

    if log_ws_manager.has_clients:
        payload: Dict[str, Any] = {
            "msg_type": msg_type,
            "message": str(message),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        log_ws_manager.send_from_thread(payload)


# ============================================================
# GLOBAL LOG WEBSOCKET MANAGER INSTANCE
# ============================================================
log_ws_manager = WebSocketManager()
