# src/Services/udp_core/validators.py
"""
Validators Module
=================
Validación de registros de telemetría normalizados.

Separado del transporte para:
- Separar lógica de validación del flujo de control
- Permitir reutilización en otros contextos (UDP, HTTP API)
- Facilitar testing sin simular el loop UDP completo

Arquitectura:
- build_telemetry_sample() lanza TelemetryValidationError si el registro
  no es utilizable (sin placa, sin coordenadas, coordenadas fuera de rango)
- Un LocTime ilegible NO invalida el registro: se conserva en loc_time_raw
  con loc_time=None; el StopDetector lo rechaza para su lógica, pero el
  registro sigue su camino (inicio de viaje, log de coordenadas, geocercas)
- El caller decide cómo loguear el rechazo

Funciones:
- build_telemetry_sample(): dict normalizado → TelemetrySample
- validate_telemetry(): wrapper que loguea y retorna None en caso de error
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from src.Core import log_ws
from src.Core.errors import TelemetryValidationError
from src.Schemas.telemetry import TelemetrySample
from src.Services.udp_core.normalizers import normalize_loc_time


def build_telemetry_sample(
    normalized: Dict[str, Any],
    received_at: Optional[datetime] = None
) -> TelemetrySample:
    """
    Construye un TelemetrySample a partir de un payload normalizado.

    Reglas:
    - Plate requerido (string no vacío, se hace strip)
    - Latitude / Longitude requeridos y numéricos; 0.0 es una coordenada válida
    - Speed ausente → 0
    - LocTime ilegible → loc_time=None, loc_time_raw conserva el original

    Args:
        normalized: Salida de normalize_telemetry_payload()
        received_at: Momento de recepción (default: ahora, UTC)

    Returns:
        TelemetrySample: Registro validado

    Raises:
        TelemetryValidationError: Si el registro no puede entrar al pipeline
    """
    plate = normalized.get("Plate")
    plate = str(plate).strip() if plate is not None else ""
    if not plate:
        raise TelemetryValidationError("Missing Plate")

    latitude = normalized.get("Latitude")
    longitude = normalized.get("Longitude")
    if latitude is None or longitude is None:
        raise TelemetryValidationError(f"Missing coordinates for vehicle {plate}", plate=plate)

    if not _is_number(latitude) or not _is_number(longitude):
        raise TelemetryValidationError(
            f"Non-numeric coordinates for vehicle {plate}: ({latitude!r}, {longitude!r})",
            plate=plate
        )

    speed = normalized.get("Speed")
    if speed is None:
        speed = 0.0
    elif not _is_number(speed):
        raise TelemetryValidationError(f"Non-numeric Speed for vehicle {plate}: {speed!r}", plate=plate)

    raw_loc_time = normalized.get("LocTime")
    try:
        loc_time = normalize_loc_time(raw_loc_time)
    except ValueError:
        loc_time = None

    mileage = normalized.get("Mileage")
    heading = normalized.get("Head")

    try:
        return TelemetrySample(
            plate=plate,
            speed=speed,
            latitude=latitude,
            longitude=longitude,
            loc_time=loc_time,
            loc_time_raw=str(raw_loc_time) if raw_loc_time is not None else None,
            mileage=mileage if _is_number(mileage) else None,
            heading=str(heading) if heading is not None else None,
            received_at=received_at or datetime.now(timezone.utc),
        )
    except ValidationError as ve:
        raise TelemetryValidationError(
            f"Invalid telemetry for vehicle {plate}: {ve.error_count()} field error(s)",
            plate=plate
        ) from ve


def validate_telemetry(
    normalized: Dict[str, Any],
    source: str,
    received_at: Optional[datetime] = None
) -> Optional[TelemetrySample]:
    """
    Valida un payload normalizado; loguea el rechazo y retorna None.

    Args:
        normalized: Salida de normalize_telemetry_payload()
        source: Origen del registro para logging (ej: "192.168.1.10:5000")
        received_at: Momento de recepción

    Returns:
        TelemetrySample | None: None si el registro fue rechazado (ya logueado)
    """
    try:
        return build_telemetry_sample(normalized, received_at=received_at)
    except TelemetryValidationError as e:
        log_ws.log_from_thread(
            f"[VALIDATOR] Rejected telemetry from {source}: {e}",
            msg_type="warning"
        )
        return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
