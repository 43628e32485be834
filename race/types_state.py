"""
race/types_state.py - Snapshot, Score and Session Dataclasses

Decoded wire records, persisted score records and the mutable per-session
state owned by the SessionManager.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from .constants import MessageKind, Phase

LanePair = Tuple[float, float]


# =============================================================================
# WIRE RECORDS
# =============================================================================

@dataclass(frozen=True)
class LaneProbabilities:
    """Per-universe (lane 0, lane 1) probabilities."""
    universe_a: LanePair
    universe_b: LanePair

    def for_universe(self, universe: str) -> LanePair:
        if universe == "A":
            return self.universe_a
        if universe == "B":
            return self.universe_b
        raise KeyError(universe)


@dataclass(frozen=True)
class Snapshot:
    """
    One decoded inbound message.

    Terminal messages decode to the same shape; for them every field is the
    authoritative final state.
    """
    kind: MessageKind
    score: float = 0.0
    lasers_passed: int = 0
    paused: bool = False
    running: bool = True
    alive: bool = True
    quantum_state: Optional[Tuple[complex, complex, complex, complex]] = None
    lane_probabilities: Optional[LaneProbabilities] = None
    distance_to_finish: Optional[float] = None
    progress: float = 0.0           # percent of the track covered
    time_elapsed: float = 0.0       # seconds
    hadamard_uses: int = 0
    successful_measures: int = 0
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not MessageKind.SNAPSHOT

    @property
    def won(self) -> bool:
        return self.kind is MessageKind.TERMINAL_WIN


# =============================================================================
# LEDGER RECORDS
# =============================================================================

@dataclass(frozen=True)
class ScoreRecord:
    """Single persisted outcome. Created at most once per session."""
    score: float
    outcome: str          # "won" | "lost"
    timestamp: str        # ISO8601 UTC
    player_name: str
    record_id: str        # uuid4 hex

    @property
    def won(self) -> bool:
        return self.outcome == "won"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoreRecord":
        return cls(
            score=float(data["score"]),
            outcome=str(data["outcome"]),
            timestamp=str(data["timestamp"]),
            player_name=str(data["player_name"]),
            record_id=str(data["record_id"]),
        )


# =============================================================================
# SESSION STATE
# =============================================================================

@dataclass
class FinalOutcome:
    """Final score/outcome captured from the first terminal message."""
    score: float
    won: bool
    recorded: bool                     # whether the ledger was written
    snapshot: Snapshot
    record: Optional[ScoreRecord] = None


@dataclass
class SessionState:
    """Mutable per-session state. Owned by SessionManager only."""
    client_id: str
    phase: Phase = Phase.IDLE
    lasers_passed: int = 0
    terminal_recorded: bool = False
    paused: bool = False
    last_snapshot: Optional[Snapshot] = None
    final: Optional[FinalOutcome] = None
    abnormal_close: bool = False
    snapshots_applied: int = 0
    commands_sent: List[str] = field(default_factory=list)
