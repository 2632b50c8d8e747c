# src/Services/udp.py
"""
UDP Server for receiving vehicle telemetry.

Clean orchestrator: this thread only receives, parses and hands records to
the event loop. Normalization, validation and the whole monitoring pipeline
run in TripMonitor, one worker per vehicle.

Datagram format (JSON, one record or a batch):
    {"Plate": "ABC123", "Speed": 0, "Latitude": -26.144, "Longitude": 28.0436,
     "LocTime": "2025-12-01 10:30:00", "Mileage": 12345.6, "Head": "N"}
"""

import socket
import threading

from src.Core import log_ws
from src.Core.config import settings
from src.Services.udp_core import parse_udp_packet


# ==========================================================
# UDP CONFIGURATION
# ==========================================================
BUFFER_SIZE = 65535  # maximum safe UDP packet size


# ==========================================================
# UDP SERVER MAIN LOOP
# ==========================================================
def handle_datagram(monitor, data: bytes, sender_ip: str, sender_port: int) -> int:
    """
    Parse one datagram and submit its records to the monitor.

    Returns:
        int: Number of records submitted
    """
    try:
        records = parse_udp_packet(data, sender_ip, sender_port)
    except ValueError as e:
        print(f"[UDP] Parse error from {sender_ip}:{sender_port}: {e}")
        return 0

    if not records:
        print(f"[UDP] Empty payload from {sender_ip}:{sender_port} - skipping")
        return 0

    source = f"{sender_ip}:{sender_port}"
    for record in records:
        monitor.submit_from_thread(record, source)

    return len(records)


def udp_server(monitor, port: int):
    """
    Main UDP server loop.

    Flow:
    1. Receive datagram
    2. Parse (with fallbacks) into raw records
    3. Submit each record to TripMonitor on the event loop
    """
    udp_sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    udp_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    udp_sock.bind(("0.0.0.0", port))
    print(f"[UDP] Server listening on port {port}")

    while True:
        try:
            data, addr = udp_sock.recvfrom(BUFFER_SIZE)
            sender_ip, sender_port = addr[0], addr[1]
            print(f"[UDP] Received {len(data)} bytes from {sender_ip}:{sender_port}")

            handle_datagram(monitor, data, sender_ip, sender_port)

        except Exception as e:
            print(f"[UDP] Critical error processing packet: {e}")
            log_ws.log_from_thread(
                f"[UDP] Critical error: {e}",
                msg_type="error"
            )


def start_udp_server(monitor, port: int = None) -> threading.Thread:
    """
    Inicia el servidor UDP en un thread daemon.

    Args:
        monitor: TripMonitor already bound to the running event loop
        port: UDP port (default: settings.UDP_PORT)

    Returns:
        threading.Thread: Thread del servidor (ya iniciado)
    """
    thread = threading.Thread(
        target=udp_server,
        args=(monitor, port or settings.UDP_PORT),
        daemon=True,
        name="UDP-Server"
    )
    thread.start()
    print("[UDP] Background thread started")
    return thread
