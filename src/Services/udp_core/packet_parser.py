# src/Services/udp_core/packet_parser.py
"""
UDP Packet Parser Module
=========================
Parsing de datagramas de telemetría con múltiples fallbacks.

Un datagrama puede traer:
- Un registro: {"Plate": "ABC123", "Speed": 42, ...}
- Un lote de registros: [{"Plate": "ABC123", ...}, {"Plate": "XYZ789", ...}]
- Un lote envuelto: {"vehicles": [{...}, {...}]}

Fallbacks implementados:
1. Decode UTF-8 normal (o con replace de bytes inválidos)
2. JSON parse directo
3. Extracción del objeto/array JSON más externo
4. Reemplazo de comillas simples por dobles
"""

import json
from typing import Any, Dict, List


def _extract_json_candidate(s: str) -> str:
    """
    Extrae el objeto (o array) JSON más externo de un string.

    Útil cuando el datagrama contiene basura antes/después del JSON válido.

    Examples:
        >>> _extract_json_candidate('garbage{"Plate":"ABC123"}more garbage')
        '{"Plate":"ABC123"}'
        >>> _extract_json_candidate('xx[{"Plate":"A"},{"Plate":"B"}]\\n')
        '[{"Plate":"A"},{"Plate":"B"}]'
        >>> _extract_json_candidate('no json here')
        'no json here'
    """
    obj_start, obj_end = s.find('{'), s.rfind('}')
    arr_start, arr_end = s.find('['), s.rfind(']')

    if arr_start != -1 and arr_end > arr_start and (obj_start == -1 or arr_start < obj_start):
        return s[arr_start:arr_end + 1]
    if obj_start != -1 and obj_end > obj_start:
        return s[obj_start:obj_end + 1]
    return s


def _as_records(payload: Any) -> List[Dict[str, Any]]:
    """
    Aplana el payload parseado a una lista de registros (dicts).
    Elementos que no son dict se descartan.
    """
    if isinstance(payload, list):
        return [item for item in payload if isinstance(item, dict)]

    if isinstance(payload, dict):
        if len(payload) == 1:
            only_value = next(iter(payload.values()))
            if isinstance(only_value, list):
                return [item for item in only_value if isinstance(item, dict)]
        return [payload]

    return []


def parse_udp_packet(data: bytes, sender_ip: str, sender_port: int) -> List[Dict[str, Any]]:
    """
    Parse de un datagrama de telemetría a una lista de registros crudos.

    Args:
        data: Raw bytes del datagrama
        sender_ip: IP del remitente (para logging)
        sender_port: Puerto del remitente (para logging)

    Returns:
        list[dict]: Registros crudos (sin normalizar); puede ser vacía

    Raises:
        ValueError: Si ningún fallback logra parsear el JSON

    Examples:
        >>> parse_udp_packet(b'{"Plate": "ABC123", "Speed": 0}', "10.0.0.5", 5000)
        [{'Plate': 'ABC123', 'Speed': 0}]
        >>> parse_udp_packet(b'[{"Plate": "A"}, {"Plate": "B"}]', "10.0.0.5", 5000)
        [{'Plate': 'A'}, {'Plate': 'B'}]
    """
    # ========================================
    # DECODE
    # ========================================
    try:
        json_str = data.decode("utf-8").strip()
    except UnicodeDecodeError:
        json_str = data.decode("utf-8", errors="replace").strip()
        print(f"[PARSER] Warning: decode replaced invalid bytes from {sender_ip}:{sender_port}")

    # Eliminar BOM (Byte Order Mark) si existe
    json_str = json_str.lstrip("\ufeff").strip()

    # ========================================
    # JSON PARSE DIRECTO
    # ========================================
    try:
        return _as_records(json.loads(json_str))
    except json.JSONDecodeError:
        pass

    # ========================================
    # EXTRAER OBJETO / ARRAY MÁS EXTERNO
    # ========================================
    candidate = _extract_json_candidate(json_str)
    try:
        records = _as_records(json.loads(candidate))
        print(f"[PARSER] Warning: used JSON extraction fallback for {sender_ip}:{sender_port}")
        return records
    except json.JSONDecodeError:
        pass

    # ========================================
    # REEMPLAZAR COMILLAS SIMPLES
    # ========================================
    try:
        records = _as_records(json.loads(candidate.replace("'", '"')))
        print(f"[PARSER] Warning: used quote replacement fallback for {sender_ip}:{sender_port}")
        return records
    except json.JSONDecodeError as jde:
        raise ValueError(
            f"JSON decode failed after all fallbacks from {sender_ip}:{sender_port}: {jde}"
        ) from jde
