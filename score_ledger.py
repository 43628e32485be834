"""
score_ledger.py - Bounded High-Score Ledger

Most-recent-first list of past outcomes, truncated to MAX_SCORE_ENTRIES and
persisted as JSON through a KeyValueStore after every change.

THE KEY SPLIT: the ledger never deduplicates. "At most once per session" is
the SessionManager's guarantee; the ledger just appends what it is given.

Load-modify-store runs under a lock so the ledger can be shared across
threads.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from typing import List
from uuid import uuid4

from kv_store import KeyValueStore
from race.constants import DEFAULT_PLAYER_NAME, MAX_SCORE_ENTRIES, SCORES_KEY
from race.types_state import ScoreRecord

logger = logging.getLogger(__name__)


# =============================================================================
# SCORE LEDGER
# =============================================================================

class ScoreLedger:
    """
    Persisted score list.

    Args:
        store: Key-value persistence collaborator
        key: Store key for the serialized list
        max_entries: Entries kept after each record()
    """

    def __init__(
        self,
        store: KeyValueStore,
        key: str = SCORES_KEY,
        max_entries: int = MAX_SCORE_ENTRIES,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be >= 1, got {max_entries}")
        self.store = store
        self.key = key
        self.max_entries = max_entries
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # persistence
    # -------------------------------------------------------------------------

    def _load_unlocked(self) -> List[ScoreRecord]:
        raw = self.store.get(self.key)
        if raw is None:
            return []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("score list is not a JSON array")
            return [ScoreRecord.from_dict(item) for item in items]
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("discarding corrupt score list under %r: %s", self.key, exc)
            return []

    def _save_unlocked(self, records: List[ScoreRecord]) -> None:
        self.store.set(self.key, json.dumps([r.to_dict() for r in records]))

    # -------------------------------------------------------------------------
    # operations
    # -------------------------------------------------------------------------

    def record(self, score: float, won: bool, player_name: str) -> ScoreRecord:
        """
        Prepend a new record, truncate, persist.

        Args:
            score: Final score
            won: Outcome flag
            player_name: Display name (blank -> DEFAULT_PLAYER_NAME)

        Returns:
            The ScoreRecord that was stored
        """
        entry = ScoreRecord(
            score=float(score),
            outcome="won" if won else "lost",
            timestamp=datetime.now(timezone.utc).isoformat(),
            player_name=(player_name or "").strip() or DEFAULT_PLAYER_NAME,
            record_id=uuid4().hex,
        )
        with self._lock:
            records = [entry] + self._load_unlocked()
            self._save_unlocked(records[: self.max_entries])
        return entry

    def load(self) -> List[ScoreRecord]:
        """Persisted list, most recent first; [] if none or corrupt."""
        with self._lock:
            return self._load_unlocked()

    def clear(self) -> None:
        """Persist an empty list."""
        with self._lock:
            self._save_unlocked([])

    def best(self) -> float:
        """Highest recorded score, 0.0 when empty."""
        records = self.load()
        return max((r.score for r in records), default=0.0)
