"""
projector.py - Joint State to Lane Probabilities

Projects the two-qubit amplitude vector (c00, c01, c10, c11) onto the two
per-universe marginal lane distributions. First index is the universe A lane,
second index is the universe B lane.

    p[k] = |c_k|^2
    A = (p00 + p01, p10 + p11)
    B = (p00 + p10, p01 + p11)

Pure functions. No side effects, no clamping except the default for absent
or degenerate input.
"""

from typing import List, Optional, Sequence

import numpy as np

from race.constants import CLASSICAL_LANE_ZERO, RENDER_EPSILON
from race.types_state import LanePair, LaneProbabilities, Snapshot


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_PROJECTION = LaneProbabilities(
    universe_a=CLASSICAL_LANE_ZERO,
    universe_b=CLASSICAL_LANE_ZERO,
)


# =============================================================================
# CORE FUNCTION 1: project
# =============================================================================

def project(state: Optional[Sequence[complex]]) -> LaneProbabilities:
    """
    Marginalize a joint state onto universe A and universe B.

    Args:
        state: 4 complex amplitudes, or None when no state was received yet

    Returns:
        LaneProbabilities; (1, 0) for both universes when state is absent or
        degenerate (wrong shape, non-finite, zero total probability)
    """
    if state is None or len(state) == 0:
        return DEFAULT_PROJECTION
    try:
        amplitudes = np.asarray(state, dtype=np.complex128)
    except (TypeError, ValueError):
        return DEFAULT_PROJECTION
    if amplitudes.shape != (4,) or not np.all(np.isfinite(amplitudes)):
        return DEFAULT_PROJECTION

    # joint[a, b] = |c_ab|^2
    joint = (np.abs(amplitudes) ** 2).reshape(2, 2)
    if not joint.sum() > 0.0:
        return DEFAULT_PROJECTION
    universe_a = joint.sum(axis=1)
    universe_b = joint.sum(axis=0)
    return LaneProbabilities(
        universe_a=(float(universe_a[0]), float(universe_a[1])),
        universe_b=(float(universe_b[0]), float(universe_b[1])),
    )


# =============================================================================
# CORE FUNCTION 2: snapshot_projection
# =============================================================================

def snapshot_projection(snapshot: Optional[Snapshot]) -> LaneProbabilities:
    """Quantum state if sent, else server lane probabilities, else default."""
    if snapshot is None:
        return DEFAULT_PROJECTION
    if snapshot.quantum_state is not None:
        return project(snapshot.quantum_state)
    if snapshot.lane_probabilities is not None:
        return snapshot.lane_probabilities
    return DEFAULT_PROJECTION


# =============================================================================
# CONSUMER HELPER: visible_lanes
# =============================================================================

def visible_lanes(pair: LanePair, epsilon: float = RENDER_EPSILON) -> List[int]:
    """Lanes whose probability reaches the render threshold."""
    return [lane for lane, p in enumerate(pair) if p >= epsilon]
