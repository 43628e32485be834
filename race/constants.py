"""
race/constants.py - Session and Wire Constants

All constants for the session client. Centralized for tuning.
Pure data, no behavior.
"""

from enum import Enum

# =============================================================================
# SESSION PHASES
# =============================================================================


class Phase(Enum):
    """Lifecycle phase of the single session a client owns."""
    IDLE = "idle"              # no transport
    CONNECTING = "connecting"  # transport opening
    ACTIVE = "active"          # receiving snapshots, commands may flow
    TERMINATED = "terminated"  # terminal seen or abnormal close


# Legal phase transitions. Anything else is an invariant breach.
ALLOWED_TRANSITIONS = {
    Phase.IDLE: frozenset({Phase.CONNECTING}),
    Phase.CONNECTING: frozenset({Phase.ACTIVE, Phase.IDLE}),
    Phase.ACTIVE: frozenset({Phase.TERMINATED, Phase.IDLE}),
    Phase.TERMINATED: frozenset({Phase.IDLE}),
}

# =============================================================================
# INBOUND MESSAGE KINDS
# =============================================================================


class MessageKind(Enum):
    """Classification of a decoded inbound payload."""
    SNAPSHOT = "snapshot"
    TERMINAL_LOSS = "terminal_loss"
    TERMINAL_WIN = "terminal_win"


# Wire discriminants ("type" field) mapped to kinds
WIRE_TYPES = {
    "game_state": MessageKind.SNAPSHOT,
    "game_over": MessageKind.TERMINAL_LOSS,
    "game_won": MessageKind.TERMINAL_WIN,
}

# =============================================================================
# OUTBOUND ACTIONS
# =============================================================================


class Action(Enum):
    """Outbound command discriminants understood by the race server."""
    START = "start"
    PAUSE = "pause"
    HADAMARD = "hadamard"
    SHIFT_LEFT = "shift_left"
    SHIFT_RIGHT = "shift_right"
    MEASURE = "measure"


UNIVERSES = ("A", "B")

# =============================================================================
# RACE GEOMETRY AND SCORING
# =============================================================================

TRACK_LENGTH = 10000.0       # distance_to_finish at the start line
FRAMES_PER_SECOND = 60       # server tick rate, frames_alive -> seconds
WIN_SCORE_THRESHOLD = 800    # legacy game_state terminal: won iff score above
NORM_TOLERANCE = 0.02        # |sum |c|^2 - 1| above this is a protocol error
RENDER_EPSILON = 0.01        # lanes below this probability are not drawn

# Default "fully classical, lane 0" pair
CLASSICAL_LANE_ZERO = (1.0, 0.0)

# =============================================================================
# LEDGER
# =============================================================================

SCORES_KEY = "qracing.scores"
MAX_SCORE_ENTRIES = 10
DEFAULT_PLAYER_NAME = "Anonymous"
