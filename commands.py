"""
commands.py - Input Symbol to Outbound Command

Maps a named key plus the current session phase to at most one Command.
Pure: no network, no storage.

Gating:
    - pause toggle: accepted whenever the session is ACTIVE (paused or not)
    - everything else: ACTIVE and not paused only
    - unknown symbols: None
"""

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from race.constants import Action, Phase


# =============================================================================
# COMMAND VALUE
# =============================================================================

@dataclass(frozen=True)
class Command:
    """Outbound command. Built fresh per key press or session action."""
    action: Action
    params: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        # read-only copy; the caller's dict stays independent
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    def to_dict(self) -> Dict[str, Any]:
        return {"action": self.action.value, **self.params}

    def to_wire(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


def start_command(difficulty: str, speed: float) -> Command:
    """Initial configuration command sent when the transport opens."""
    return Command(Action.START, {"difficulty": difficulty, "speed": speed})


PAUSE_TOGGLE = Command(Action.PAUSE)


# =============================================================================
# KEY MAP
# =============================================================================

# symbol -> (action, target universe or None)
KEYMAP: Dict[str, Tuple[Action, Optional[str]]] = {
    "Escape": (Action.PAUSE, None),
    "p": (Action.PAUSE, None),
    "P": (Action.PAUSE, None),
    "h": (Action.HADAMARD, None),
    "H": (Action.HADAMARD, None),
    "ArrowLeft": (Action.SHIFT_LEFT, None),
    "a": (Action.SHIFT_LEFT, None),
    "A": (Action.SHIFT_LEFT, None),
    "ArrowRight": (Action.SHIFT_RIGHT, None),
    "d": (Action.SHIFT_RIGHT, None),
    "D": (Action.SHIFT_RIGHT, None),
    "m": (Action.MEASURE, None),
    "M": (Action.MEASURE, None),
    # universe-targeted gates
    "1": (Action.HADAMARD, "A"),
    "2": (Action.HADAMARD, "B"),
}


# =============================================================================
# CORE FUNCTION: encode
# =============================================================================

def encode(symbol: str, phase: Phase, paused: bool) -> Optional[Command]:
    """
    Resolve a key symbol against the session phase.

    Args:
        symbol: Named key ("h", "ArrowLeft", "Escape", ...)
        phase: Current session phase
        paused: Server-reported paused flag from the last snapshot

    Returns:
        A new Command to send, or None if the key is unknown or not allowed now
    """
    binding = KEYMAP.get(symbol)
    if binding is None or phase is not Phase.ACTIVE:
        return None
    action, universe = binding
    if paused and action is not Action.PAUSE:
        return None
    return Command(action, {"universe": universe} if universe else {})
