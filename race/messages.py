"""
race/messages.py - Inbound Wire Codec

Decodes server payloads into Snapshot records. Anything that cannot be
decoded raises MalformedPayload; the session drops such payloads without
touching state.

Wire format:
    {"type": "game_state" | "game_over" | "game_won", "data": {...}}

A game_state with running=false and a vehicle present is the legacy terminal
form; it is a win iff the score exceeds WIN_SCORE_THRESHOLD.
"""

import json
import math
from typing import Any, Dict, Optional, Tuple, Union

from .constants import (
    FRAMES_PER_SECOND,
    MessageKind,
    NORM_TOLERANCE,
    TRACK_LENGTH,
    UNIVERSES,
    WIN_SCORE_THRESHOLD,
    WIRE_TYPES,
)
from .types_state import LaneProbabilities, Snapshot


class MalformedPayload(ValueError):
    """Inbound payload could not be decoded into a Snapshot."""
    pass


# =============================================================================
# FIELD COERCION
# =============================================================================

def _number(value: Any, name: str) -> float:
    # bool is an int subclass but never a valid number on the wire
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedPayload(f"{name} must be numeric, got {type(value).__name__}")
    if not math.isfinite(value):
        raise MalformedPayload(f"{name} must be finite")
    return float(value)


def _integer(value: Any, name: str) -> int:
    number = _number(value, name)
    if not number.is_integer():
        raise MalformedPayload(f"{name} must be integral, got {value}")
    return int(number)


def _flag(value: Any, name: str) -> bool:
    if not isinstance(value, bool):
        raise MalformedPayload(f"{name} must be boolean, got {type(value).__name__}")
    return value


def _amplitude(value: Any) -> complex:
    """Real number, [re, im] pair, or {"re": .., "im": ..}."""
    if isinstance(value, dict):
        return complex(_number(value.get("re", 0.0), "re"), _number(value.get("im", 0.0), "im"))
    if isinstance(value, (list, tuple)):
        if len(value) != 2:
            raise MalformedPayload("complex amplitude pair must have 2 entries")
        return complex(_number(value[0], "re"), _number(value[1], "im"))
    return complex(_number(value, "amplitude"), 0.0)


def decode_state_vector(values: Any) -> Tuple[complex, complex, complex, complex]:
    """Decode and norm-check a 4-amplitude joint state (c00, c01, c10, c11)."""
    if not isinstance(values, (list, tuple)) or len(values) != 4:
        raise MalformedPayload("quantum state must have exactly 4 amplitudes")
    amplitudes = tuple(_amplitude(v) for v in values)
    norm = sum(abs(c) ** 2 for c in amplitudes)
    if abs(norm - 1.0) > NORM_TOLERANCE:
        raise MalformedPayload(f"quantum state not normalized (norm={norm:.4f})")
    return amplitudes  # type: ignore[return-value]


def _lane_probabilities(value: Any) -> LaneProbabilities:
    if not isinstance(value, dict):
        raise MalformedPayload("lane_probabilities must be an object")
    pairs = []
    for universe in UNIVERSES:
        pair = value.get(universe)
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise MalformedPayload(f"lane_probabilities[{universe}] must be a pair")
        pairs.append((_number(pair[0], "p0"), _number(pair[1], "p1")))
    return LaneProbabilities(universe_a=pairs[0], universe_b=pairs[1])


# =============================================================================
# DECODE
# =============================================================================

def _find_state_vector(data: Dict[str, Any], vehicle: Dict[str, Any]) -> Optional[Any]:
    for key in ("quantum_state", "state_vector"):
        if data.get(key) is not None:
            return data[key]
    amplitudes = vehicle.get("amplitudes")
    if isinstance(amplitudes, (list, tuple)) and len(amplitudes) == 4:
        return amplitudes
    return None


def _optional(mapping: Dict[str, Any], key: str, coerce, default):
    if mapping.get(key) is None:
        return default
    return coerce(mapping[key], key)


def decode(payload: Union[str, bytes]) -> Snapshot:
    """
    Decode one inbound payload.

    Args:
        payload: UTF-8 JSON text (bytes are decoded first)

    Returns:
        Snapshot with kind SNAPSHOT, TERMINAL_LOSS or TERMINAL_WIN

    Raises:
        MalformedPayload: bad encoding, bad JSON, unknown type, bad fields
    """
    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayload("payload is not UTF-8") from exc
    try:
        message = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise MalformedPayload("payload is not JSON") from exc

    if not isinstance(message, dict):
        raise MalformedPayload("payload must be a JSON object")
    kind = WIRE_TYPES.get(message.get("type"))
    if kind is None:
        raise MalformedPayload(f"unknown message type: {message.get('type')!r}")
    data = message.get("data")
    if not isinstance(data, dict):
        raise MalformedPayload("data must be an object")
    vehicle = data.get("vehicle") or {}
    if not isinstance(vehicle, dict):
        raise MalformedPayload("vehicle must be an object")

    score = _optional(data, "score", _number, None)
    if score is None:
        score = _optional(vehicle, "score", _number, 0.0)

    state_values = _find_state_vector(data, vehicle)
    quantum_state = decode_state_vector(state_values) if state_values is not None else None
    lanes = None
    if data.get("lane_probabilities") is not None:
        lanes = _lane_probabilities(data["lane_probabilities"])

    distance = _optional(data, "distance_to_finish", _number, None)
    progress = _optional(data, "progress", _number, None)
    if progress is None:
        progress = (TRACK_LENGTH - distance) / TRACK_LENGTH * 100.0 if distance is not None else 0.0

    elapsed = _optional(data, "time_elapsed", _number, None)
    if elapsed is None:
        elapsed = _optional(vehicle, "frames_alive", _integer, 0) / FRAMES_PER_SECOND

    running = _optional(data, "running", _flag, True)
    if kind is MessageKind.SNAPSHOT and not running and vehicle:
        kind = MessageKind.TERMINAL_WIN if score > WIN_SCORE_THRESHOLD else MessageKind.TERMINAL_LOSS

    lasers = _optional(data, "lasers_passed", _integer, 0)
    if lasers < 0:
        raise MalformedPayload("lasers_passed must be non-negative")

    return Snapshot(
        kind=kind,
        score=score,
        lasers_passed=lasers,
        paused=_optional(data, "paused", _flag, False),
        running=running,
        alive=_optional(vehicle, "alive", _flag, True),
        quantum_state=quantum_state,
        lane_probabilities=lanes,
        distance_to_finish=distance,
        progress=progress,
        time_elapsed=elapsed,
        hadamard_uses=_optional(vehicle, "hadamard_uses", _integer, 0),
        successful_measures=_optional(vehicle, "successful_measures", _integer, 0),
        raw=data,
    )
