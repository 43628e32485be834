"""
Q-Racing Configuration Schema - Self-Validating Client Config

This module defines RaceConfig, the immutable client configuration, and
SessionConfig, the per-session slice captured at start() time.

Consumed by:
- session.py (SessionConfig at start)
- racer.py (CLI)

Design Principles:
- Self-validating: Can't create invalid config
- Self-healing: Invalid input -> safe defaults + warnings (unless strict)
- Immutable: Frozen after load, no runtime mutation
"""

from __future__ import annotations

import json
import warnings
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

from race.constants import DEFAULT_PLAYER_NAME, MAX_SCORE_ENTRIES


__all__ = [
    'RaceConfig',
    'SessionConfig',
    'load',
    'default',
    'validate_data',
]


# =============================================================================
# JSON Schema Definition (Draft 2020-12)
# =============================================================================

DIFFICULTIES = ("easy", "normal", "hard")
SPEED_MIN = 0.5
SPEED_MAX = 3.0
MAX_SCORES_CEILING = 100

_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "title": "RaceConfig",
    "description": "Q-Racing client configuration",
    "type": "object",
    "properties": {
        "server_url": {
            "type": "string",
            "description": "WebSocket base URL; the client id is appended",
            "pattern": r"^wss?://",
        },
        "difficulty": {
            "type": "string",
            "description": "Difficulty sent with the start command",
            "enum": list(DIFFICULTIES),
        },
        "speed": {
            "type": "number",
            "description": "Speed setting sent with the start command",
            "minimum": SPEED_MIN,
            "maximum": SPEED_MAX,
        },
        "player_name": {
            "type": "string",
            "description": "Display name stored with score records",
        },
        "scores_path": {
            "type": "string",
            "description": "JSON file backing the score ledger",
            "minLength": 1,
        },
        "max_scores": {
            "type": "integer",
            "description": "Score ledger capacity",
            "minimum": 1,
            "maximum": MAX_SCORES_CEILING,
        },
        "receipts_path": {
            "type": ["string", "null"],
            "description": "Optional JSONL file receiving session receipts",
        },
    },
    "additionalProperties": False,
}

# Compiled once at import
Draft202012Validator.check_schema(_JSON_SCHEMA)
_COMPILED_VALIDATOR = Draft202012Validator(_JSON_SCHEMA)

_DEFAULTS: Dict[str, Any] = {
    "server_url": "wss://quantum-racing-backend.onrender.com/ws",
    "difficulty": "normal",
    "speed": 1.0,
    "player_name": DEFAULT_PLAYER_NAME,
    "scores_path": "data/scores.json",
    "max_scores": MAX_SCORE_ENTRIES,
    "receipts_path": None,
}


# =============================================================================
# SessionConfig Dataclass
# =============================================================================

@dataclass(frozen=True)
class SessionConfig:
    """Immutable settings captured when a session starts."""
    difficulty: str = "normal"
    speed: float = 1.0
    player_name: str = DEFAULT_PLAYER_NAME


# =============================================================================
# RaceConfig Dataclass
# =============================================================================

@dataclass(frozen=True)
class RaceConfig:
    """
    Q-Racing client configuration.

    Attributes:
        server_url: WebSocket base URL (client id appended per session)
        difficulty: easy | normal | hard
        speed: Speed setting, SPEED_MIN..SPEED_MAX
        player_name: Name stored with score records
        scores_path: JSON file for the score ledger
        max_scores: Ledger capacity
        receipts_path: Optional JSONL receipt log
    """
    server_url: str = _DEFAULTS["server_url"]
    difficulty: str = _DEFAULTS["difficulty"]
    speed: float = _DEFAULTS["speed"]
    player_name: str = _DEFAULTS["player_name"]
    scores_path: str = _DEFAULTS["scores_path"]
    max_scores: int = _DEFAULTS["max_scores"]
    receipts_path: Optional[str] = None

    def session_config(self) -> SessionConfig:
        """Per-session slice handed to SessionManager.start()."""
        return SessionConfig(
            difficulty=self.difficulty,
            speed=self.speed,
            player_name=self.player_name,
        )

    def session_url(self, client_id: str) -> str:
        return f"{self.server_url.rstrip('/')}/{client_id}"

    def with_overrides(self, **changes: Any) -> RaceConfig:
        """New config with changes applied and re-validated (strict)."""
        data = self.to_dict()
        data.update({k: v for k, v in changes.items() if v is not None})
        return _create_config(data, strict=True)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self, pretty: bool = False) -> str:
        return json.dumps(self.to_dict(), indent=2 if pretty else None, sort_keys=True)

    def save(self, path: str) -> None:
        """Write as YAML or JSON depending on suffix."""
        path_obj = Path(path)
        path_obj.parent.mkdir(parents=True, exist_ok=True)
        if path_obj.suffix in ('.yaml', '.yml'):
            path_obj.write_text(yaml.safe_dump(self.to_dict(), sort_keys=True))
        else:
            path_obj.write_text(self.to_json(pretty=True))


# =============================================================================
# Public Loaders
# =============================================================================

def load(path: str, strict: bool = False) -> RaceConfig:
    """
    Load config from JSON/YAML file.

    Auto-validates on load (not separate step).

    Args:
        path: Path to config file
        strict: If True, raise on invalid; if False, self-heal with warnings

    Returns:
        Validated, frozen RaceConfig instance

    Raises:
        FileNotFoundError: If path doesn't exist
        ValueError: If the file is not parseable, or strict=True and
            validation fails
    """
    path_obj = Path(path)

    if not path_obj.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    content = path_obj.read_text()

    try:
        if path_obj.suffix in ('.yaml', '.yml'):
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ValueError(f"Config file {path} is not parseable: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")

    return _create_config(data, strict)


def default() -> RaceConfig:
    """Config with every field at its default."""
    return RaceConfig()


def validate_data(data: Dict[str, Any]) -> Tuple[bool, List[str]]:
    """Validate raw config data. Returns (is_valid, errors)."""
    errors = [
        f"{'.'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
        for err in _COMPILED_VALIDATOR.iter_errors(data)
    ]
    return len(errors) == 0, errors


# =============================================================================
# Internal
# =============================================================================

def _self_heal(data: Dict[str, Any], warns: List[str]) -> Dict[str, Any]:
    """
    Self-healing behavior:
    - Missing or wrongly typed field -> default, add warning
    - Out-of-range number -> clamp, add warning
    - Unknown field -> drop, add warning
    """
    healed: Dict[str, Any] = {}

    for field_name, value in data.items():
        if field_name not in _DEFAULTS:
            warns.append(f"Ignoring unknown field: {field_name}")
        else:
            healed[field_name] = value

    if 'speed' in healed and isinstance(healed['speed'], (int, float)) and not isinstance(healed['speed'], bool):
        val = healed['speed']
        clamped = min(max(float(val), SPEED_MIN), SPEED_MAX)
        if clamped != val:
            warns.append(f"Clamped speed from {val} to {clamped}")
        healed['speed'] = clamped

    if 'max_scores' in healed and isinstance(healed['max_scores'], int) and not isinstance(healed['max_scores'], bool):
        val = healed['max_scores']
        clamped = min(max(val, 1), MAX_SCORES_CEILING)
        if clamped != val:
            warns.append(f"Clamped max_scores from {val} to {clamped}")
        healed['max_scores'] = clamped

    # Anything still invalid falls back to its default
    for err in _COMPILED_VALIDATOR.iter_errors(healed):
        if err.path:
            bad = err.path[0]
            warns.append(f"Invalid {bad} ({err.message}), using default: {_DEFAULTS[bad]}")
            healed[bad] = _DEFAULTS[bad]

    return healed


def _create_config(data: Dict[str, Any], strict: bool) -> RaceConfig:
    """Validate, optionally self-heal, then freeze."""
    is_valid, errors = validate_data(data)

    if not is_valid:
        if strict:
            raise ValueError(f"Config validation failed: {errors}")
        warns: List[str] = []
        data = _self_heal(data, warns)
        for w in warns:
            warnings.warn(w, UserWarning, stacklevel=3)

    merged = dict(_DEFAULTS)
    merged.update(data)
    # JSON allows 2 for 2.0 and 10.0 for 10
    merged['speed'] = float(merged['speed'])
    merged['max_scores'] = int(merged['max_scores'])
    return RaceConfig(**merged)
