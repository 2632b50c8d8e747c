# src/Services/udp_core/normalizers.py
"""
Telemetry Normalizers Module
============================
Normaliza payloads de telemetría crudos (UDP o HTTP) al schema interno.

Centraliza las reglas de mapeo para:
- Reutilización en múltiples fuentes de datos (UDP, POST /monitor/telemetry)
- Testing unitario de transformaciones de datos
- Mantenibilidad de reglas de mapeo centralizadas

Funciones:
- coerce_number(): Convierte strings numéricos a float
- normalize_loc_time(): LocTime del dispositivo → datetime UTC
- normalize_telemetry_payload(): Orquesta mapeo + filtrado + coerción
"""

from datetime import datetime, timezone
from typing import Dict, Any, Union


# ==========================================================
# CONSTANTES DE MAPEO
# ==========================================================

ALLOWED_KEYS = {
    "Plate",
    "Speed",
    "Latitude",
    "Longitude",
    "LocTime",
    "Mileage",
    "Head"
}
"""
Campos permitidos en el payload de telemetría normalizado.
Cualquier otro campo será filtrado.
"""

NUMERIC_KEYS = {"Speed", "Latitude", "Longitude", "Mileage"}
"""
Campos que pasan por coerce_number(). Plate, LocTime y Head se conservan
tal cual (una placa "1234" debe seguir siendo string).
"""

KEY_MAP = {
    # Plate variants
    "plate": "Plate",
    "vehicle_plate": "Plate",
    "vehiclePlate": "Plate",
    "Plate": "Plate",

    # Speed variants
    "speed": "Speed",
    "Speed": "Speed",

    # GPS coordinate variants
    "latitude": "Latitude",
    "lat": "Latitude",
    "Latitude": "Latitude",

    "longitude": "Longitude",
    "lon": "Longitude",
    "lng": "Longitude",
    "Longitude": "Longitude",

    # Device time variants
    "loctime": "LocTime",
    "loc_time": "LocTime",
    "locTime": "LocTime",
    "LocTime": "LocTime",

    # Opaque fields
    "mileage": "Mileage",
    "Mileage": "Mileage",
    "head": "Head",
    "heading": "Head",
    "Head": "Head",
}
"""
Mapeo de nombres de campos alternativos al nombre canónico.
Permite recibir 'plate', 'vehiclePlate', etc. y normalizarlos a 'Plate'.
"""

LOC_TIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S.%f",
    "%Y/%m/%d %H:%M:%S",
)
"""
Formatos de LocTime enviados por los equipos de rastreo.
El formato principal es "2025-12-01 10:30:00". ISO 8601 se intenta después.
"""


# ==========================================================
# FUNCIONES DE BAJO NIVEL
# ==========================================================

def coerce_number(value: Any) -> Union[float, int, str, None]:
    """
    Convierte strings numéricos a float, maneja null/empty.

    Reglas de conversión:
    - None → None
    - int/float → mantiene como está
    - "" → None
    - "null" (case-insensitive) → None
    - "3,14" → 3.14 (reemplaza coma por punto)
    - "42" → 42.0
    - Cualquier otro string no numérico → mantiene como string

    Examples:
        >>> coerce_number("-26.1440")
        -26.144
        >>> coerce_number("3,14")
        3.14
        >>> coerce_number("null")
        None
        >>> coerce_number("n/a")
        'n/a'
    """
    if value is None:
        return None

    if isinstance(value, bool):
        return value

    if isinstance(value, (int, float)):
        return value

    if isinstance(value, str):
        v = value.strip()

        if v == "" or v.lower() == "null":
            return None

        v = v.replace(",", ".")

        try:
            return float(v)
        except ValueError:
            return value

    return value


def normalize_loc_time(value: Any) -> datetime:
    """
    Normaliza el LocTime del dispositivo a datetime UTC-aware.

    Soporta:
    - datetime objects (con o sin timezone)
    - "YYYY-MM-DD HH:MM:SS" (formato de los equipos)
    - ISO 8601 ("2025-12-01T10:30:00Z", "2025-12-01T12:30:00+02:00")
    - UNIX timestamp en segundos o milisegundos (número o string numérico)

    Un LocTime sin zona horaria se interpreta como UTC.

    Raises:
        ValueError: Si el valor falta o el formato no es reconocible

    Examples:
        >>> normalize_loc_time("2025-12-01 10:30:00")
        datetime.datetime(2025, 12, 1, 10, 30, tzinfo=datetime.timezone.utc)
        >>> normalize_loc_time(1730000000000)  # Milisegundos
        datetime.datetime(2024, 10, 27, 3, 33, 20, tzinfo=datetime.timezone.utc)
    """
    if value is None:
        raise ValueError("LocTime is missing")

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, bool):
        raise ValueError(f"Invalid LocTime format: {value!r}")

    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("LocTime is empty")

        for fmt in LOC_TIME_FORMATS:
            try:
                return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue

        try:
            return _as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            pass

        try:
            value = float(text)
        except ValueError as e:
            raise ValueError(f"Invalid LocTime format: {value!r}") from e

    try:
        ts_float = float(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid LocTime format: {value!r}") from e

    # Heurística: timestamps > 10^10 son milisegundos
    if ts_float > 10_000_000_000:
        ts_float = ts_float / 1000.0

    try:
        return datetime.fromtimestamp(ts_float, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"Invalid LocTime format: {value!r}") from e


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(timezone.utc) if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ==========================================================
# FUNCIÓN DE ALTO NIVEL
# ==========================================================

def normalize_telemetry_payload(raw_payload: Any) -> Dict[str, Any]:
    """
    Normaliza un registro de telemetría al schema interno.

    Proceso de normalización:
    1. Maneja payloads envueltos en objeto single-key ({"vehicle": {...}})
    2. Mapea claves alternativas (vehiclePlate → Plate)
    3. Filtra campos no permitidos (solo ALLOWED_KEYS)
    4. Convierte números en strings a float (solo NUMERIC_KEYS)

    Args:
        raw_payload: Registro crudo (dict o nested dict)

    Returns:
        dict: Payload normalizado con claves canónicas

    Examples:
        >>> normalize_telemetry_payload({
        ...     "Plate": "ABC123", "Speed": "0", "Latitude": "-26.1440",
        ...     "Longitude": "28.0436", "LocTime": "2025-12-01 10:30:00",
        ...     "Odometer": 5
        ... })
        {'Plate': 'ABC123', 'Speed': 0.0, 'Latitude': -26.144,
         'Longitude': 28.0436, 'LocTime': '2025-12-01 10:30:00'}

    Notes:
        - LocTime NO es normalizado aquí (se hace en validators con normalize_loc_time)
        - Campos no reconocidos son silenciosamente descartados
        - Si raw_payload no es dict, retorna dict vacío
    """
    if isinstance(raw_payload, dict) and len(raw_payload) == 1:
        only_key = next(iter(raw_payload))
        candidate = raw_payload[only_key] if isinstance(raw_payload[only_key], dict) else raw_payload
    else:
        candidate = raw_payload if isinstance(raw_payload, dict) else {}

    normalized: Dict[str, Any] = {}

    for k, v in candidate.items():
        if not isinstance(k, str):
            continue

        mapped = KEY_MAP.get(k, KEY_MAP.get(k.lower(), k))

        if mapped in ALLOWED_KEYS:
            normalized[mapped] = coerce_number(v) if mapped in NUMERIC_KEYS else v

    return normalized
