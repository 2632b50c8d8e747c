# src/Services/udp_core/__init__.py
"""
UDP Core Module
===============
Módulo encapsulado para el manejo de registros de telemetría entrantes.

Componentes:
- packet_parser: Parsing de paquetes UDP con fallbacks robustos
- normalizers: Normalización de payloads de telemetría a schema interno
- validators: Validación de registros y construcción de TelemetrySample
"""

from .packet_parser import parse_udp_packet
from .normalizers import (
    ALLOWED_KEYS,
    KEY_MAP,
    coerce_number,
    normalize_loc_time,
    normalize_telemetry_payload
)
from .validators import (
    build_telemetry_sample,
    validate_telemetry
)

__all__ = [
    # Packet parser
    'parse_udp_packet',

    # Normalizers - Constants
    'ALLOWED_KEYS',
    'KEY_MAP',

    # Normalizers - Functions
    'coerce_number',
    'normalize_loc_time',
    'normalize_telemetry_payload',

    # Validators
    'build_telemetry_sample',
    'validate_telemetry',
]
