# src/Services/trip_notifications.py
"""
Trip-change notification listener (PostgreSQL LISTEN/NOTIFY).

The route_plans trigger (see alembic migration) publishes on
settings.NOTIFY_CHANNEL:

    {"type": "created", "trip_id": "T-100", "plate": "ABC123"}   -- INSERT
    {"type": "ended",   "trip_id": "T-100", "plate": "ABC123"}   -- actual_end_time set

A daemon thread holds one autocommit connection, waits on it with select()
and hands every notification to TripMonitor.on_trip_change() on the event
loop. A dropped connection is re-opened after a short pause; delivery is
at-least-once from the monitor's point of view.

NOTIFY is not queued for absent listeners, so every successful LISTEN is
followed by TripMonitor.reconcile() to pick up changes made while the
connection was down. A failed re-sync counts as a connection error.
"""

import asyncio
import json
import re
import select
import threading
from concurrent.futures import Future, wait
from typing import Any, Dict, Optional

from src.Core import log_ws
from src.Core.config import settings
from src.DB.session import engine

RECONNECT_DELAY_S = 5.0
_CHANNEL_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_notification(payload: str) -> Optional[Dict[str, Any]]:
    """
    Decode a NOTIFY payload. Returns None (already logged) if it is not a JSON object.
    """
    try:
        data = json.loads(payload)
    except (TypeError, ValueError):
        print(f"[NOTIFY] Ignoring non-JSON payload: {payload!r}")
        return None

    if not isinstance(data, dict):
        print(f"[NOTIFY] Ignoring payload that is not an object: {payload!r}")
        return None

    return data


class TripNotificationListener:
    """
    Background LISTEN loop feeding trip-change events to the monitor.

    Args:
        monitor: TripMonitor (must already be reconciled; its loop is used)
        channel: NOTIFY channel name
        poll_s: select() timeout, bounds how fast stop() is honoured
    """

    def __init__(self, monitor, channel: Optional[str] = None, poll_s: Optional[float] = None):
        self.monitor = monitor
        self.channel = channel or settings.NOTIFY_CHANNEL
        self.poll_s = settings.NOTIFY_POLL_S if poll_s is None else poll_s
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

        if not _CHANNEL_RE.match(self.channel):
            raise ValueError(f"Invalid NOTIFY channel name: {self.channel!r}")

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self._run, daemon=True, name="Trip-Notify")
        self._thread.start()
        print(f"[NOTIFY] Listening on channel '{self.channel}'")
        return self._thread

    def stop(self) -> None:
        self._stop.set()

    def dispatch(self, payload: str) -> Optional[Future]:
        """Forward one raw payload to the monitor's event loop."""
        event = parse_notification(payload)
        if event is None:
            return None

        loop = self.monitor.loop
        if loop is None or loop.is_closed():
            print("[NOTIFY] Event loop not ready - notification dropped")
            return None

        return asyncio.run_coroutine_threadsafe(self.monitor.on_trip_change(event), loop)

    def resync(self) -> Optional[Future]:
        """Schedule a registry re-sync with the store on the monitor's event loop."""
        loop = self.monitor.loop
        if loop is None or loop.is_closed():
            print("[NOTIFY] Event loop not ready - re-sync skipped")
            return None

        return asyncio.run_coroutine_threadsafe(self.monitor.reconcile(), loop)

    def _await_resync(self) -> None:
        pending = self.resync()
        while pending is not None and not self._stop.is_set():
            done, _ = wait([pending], timeout=self.poll_s)
            if not done:
                continue
            if pending.cancelled():
                return
            pending.result()
            return

    def _run(self) -> None:
        while not self._stop.is_set():
            raw = None
            try:
                raw = engine.raw_connection()
                conn = raw.driver_connection
                conn.autocommit = True

                with conn.cursor() as cur:
                    cur.execute(f"LISTEN {self.channel};")

                self._await_resync()

                while not self._stop.is_set():
                    ready, _, _ = select.select([conn], [], [], self.poll_s)
                    if not ready:
                        continue

                    conn.poll()
                    while conn.notifies:
                        notify = conn.notifies.pop(0)
                        self.dispatch(notify.payload)

            except Exception as e:
                log_ws.log_from_thread(
                    f"[NOTIFY] Listener error: {type(e).__name__}: {e} - reconnecting in {RECONNECT_DELAY_S:.0f}s",
                    msg_type="error"
                )
                self._stop.wait(RECONNECT_DELAY_S)
            finally:
                if raw is not None:
                    try:
                        raw.close()
                    except Exception as close_error:
                        print(f"[NOTIFY] Error closing listener connection: {close_error}")

        print("[NOTIFY] Listener stopped")


def start_notification_listener(monitor) -> TripNotificationListener:
    """
    Start the LISTEN thread for `monitor`.

    Returns:
        TripNotificationListener: Running listener (call stop() on shutdown)
    """
    listener = TripNotificationListener(monitor)
    listener.start()
    return listener
