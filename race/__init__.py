"""
race - Q-Racing Wire Types

Public API for phases, decoded snapshots, score records and the inbound codec.
Flat, focused files. One file = one responsibility.
"""

# =============================================================================
# CONSTANTS
# =============================================================================
from .constants import (
    Phase,
    MessageKind,
    Action,
    ALLOWED_TRANSITIONS,
    UNIVERSES,
    TRACK_LENGTH,
    WIN_SCORE_THRESHOLD,
    NORM_TOLERANCE,
    RENDER_EPSILON,
    CLASSICAL_LANE_ZERO,
    SCORES_KEY,
    MAX_SCORE_ENTRIES,
    DEFAULT_PLAYER_NAME,
)

# =============================================================================
# TYPES (Dataclasses)
# =============================================================================
from .types_state import (
    LaneProbabilities,
    Snapshot,
    ScoreRecord,
    FinalOutcome,
    SessionState,
)

# =============================================================================
# CODEC
# =============================================================================
from .messages import MalformedPayload, decode, decode_state_vector

__all__ = [
    "Phase",
    "MessageKind",
    "Action",
    "ALLOWED_TRANSITIONS",
    "UNIVERSES",
    "TRACK_LENGTH",
    "WIN_SCORE_THRESHOLD",
    "NORM_TOLERANCE",
    "RENDER_EPSILON",
    "CLASSICAL_LANE_ZERO",
    "SCORES_KEY",
    "MAX_SCORE_ENTRIES",
    "DEFAULT_PLAYER_NAME",
    "LaneProbabilities",
    "Snapshot",
    "ScoreRecord",
    "FinalOutcome",
    "SessionState",
    "MalformedPayload",
    "decode",
    "decode_state_vector",
]
