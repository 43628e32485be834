"""
session.py - Session Manager

Owns the lifecycle of one connection to the remote race simulation:

    IDLE -> CONNECTING -> ACTIVE -> TERMINATED -> IDLE

Every phase change goes through ALLOWED_TRANSITIONS. A breach is a bug in
this module and raises StopRule.

THE KEY INSIGHT: a transport callback is only honoured if it comes from the
live transport. Each transport is bound to a generation number when it is
acquired; retiring the transport bumps the generation, so a trailing message
from a closed or replaced transport cannot touch the current session.

Terminal idempotence: the first terminal message sets terminal_recorded and
moves the phase to TERMINATED. Any later terminal (duplicate, or in flight
while the close completes) is ignored by both guards. The score ledger is
written at most once per session, and only for a positive final score.

Every observable event is a receipt (receipts.emit_receipt) appended to
self.receipts and delivered to subscribers.
"""

import logging
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Union
from uuid import uuid4

import commands
from commands import Command, start_command
from config_schema import SessionConfig
from race.constants import ALLOWED_TRANSITIONS, Phase
from race.messages import MalformedPayload, decode
from race.types_state import FinalOutcome, SessionState, Snapshot
from receipts import StopRule, emit_receipt
from score_ledger import ScoreLedger
from transport import Transport, TransportError, TransportFactory, TransportHandlers

logger = logging.getLogger(__name__)

Observer = Callable[[Dict[str, Any]], None]

# Module exports for receipt types
RECEIPT_SCHEMA = [
    "phase_change",
    "transport_open_failed",
    "transport_error",
    "laser_passed",
    "session_terminal",
    "abnormal_close",
    "ledger_write_failed",
]


def generate_client_id() -> str:
    """Opaque client identifier, generated once per manager instance."""
    return uuid4().hex[:12]


# =============================================================================
# SESSION MANAGER
# =============================================================================

class SessionManager:
    """
    Single-session client state machine.

    Args:
        transport_factory: factory(url, handlers) -> Transport
        ledger: ScoreLedger written once per session with a positive score
        session_url: maps the client id to the transport URL
        default_config: SessionConfig used when start() gets none
        client_id: fixed identifier (generated when omitted)
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        ledger: ScoreLedger,
        session_url: Callable[[str], str],
        default_config: Optional[SessionConfig] = None,
        client_id: Optional[str] = None,
    ):
        self._factory = transport_factory
        self.ledger = ledger
        self._session_url = session_url
        self.default_config = default_config or SessionConfig()
        self.client_id = client_id or generate_client_id()
        self.state = SessionState(client_id=self.client_id)
        self.config: Optional[SessionConfig] = None
        self.receipts: List[Dict[str, Any]] = []
        self._observers: List[Observer] = []
        self._transport: Optional[Transport] = None
        self._generation = 0
        self._pending_start: Optional[Command] = None

    # -------------------------------------------------------------------------
    # observation
    # -------------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def paused(self) -> bool:
        return self.state.paused

    @property
    def last_snapshot(self) -> Optional[Snapshot]:
        return self.state.last_snapshot

    @property
    def final(self) -> Optional[FinalOutcome]:
        return self.state.final

    @property
    def has_live_transport(self) -> bool:
        return self._transport is not None

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns an unsubscribe callable."""
        self._observers.append(observer)
        return partial(self._unsubscribe, observer)

    def _unsubscribe(self, observer: Observer) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _emit(self, receipt_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        receipt = emit_receipt(receipt_type, {"tenant_id": self.client_id, **data})
        self.receipts.append(receipt)
        for observer in list(self._observers):
            observer(receipt)
        return receipt

    # -------------------------------------------------------------------------
    # phase table
    # -------------------------------------------------------------------------

    def _transition(self, target: Phase) -> None:
        current = self.state.phase
        if target not in ALLOWED_TRANSITIONS[current]:
            raise StopRule(f"illegal session transition {current.value} -> {target.value}")
        self.state.phase = target
        self._emit("phase_change", {"from": current.value, "to": target.value})

    # -------------------------------------------------------------------------
    # transport ownership
    # -------------------------------------------------------------------------

    def _handlers(self, generation: int) -> TransportHandlers:
        return TransportHandlers(
            on_open=partial(self._on_open, generation),
            on_message=partial(self._on_message, generation),
            on_error=partial(self._on_error, generation),
            on_close=partial(self._on_close, generation),
        )

    def _release_transport(self) -> None:
        """Retire the live transport. Its future callbacks become no-ops."""
        transport, self._transport = self._transport, None
        self._generation += 1
        self._pending_start = None
        if transport is not None:
            try:
                transport.close()
            except TransportError as exc:
                logger.warning("error closing transport: %s", exc)

    def _reset_state(self) -> None:
        self.state = SessionState(client_id=self.client_id)
        self.config = None

    # -------------------------------------------------------------------------
    # lifecycle operations
    # -------------------------------------------------------------------------

    def start(self, config: Optional[SessionConfig] = None) -> bool:
        """
        IDLE -> CONNECTING. Opens a transport.

        Returns:
            True if the transport was created, False if it could not be
            opened (phase is back to IDLE and a transport_open_failed
            receipt was emitted)
        """
        if self.state.phase is not Phase.IDLE:
            raise StopRule(f"start() requires IDLE, session is {self.state.phase.value}")
        self.config = config or self.default_config
        self.state.lasers_passed = 0
        self.state.terminal_recorded = False
        self.state.paused = False
        self._transition(Phase.CONNECTING)

        self._generation += 1
        generation = self._generation
        url = self._session_url(self.client_id)
        try:
            transport = self._factory(url, self._handlers(generation))
        except (TransportError, OSError) as exc:
            logger.error("could not open transport to %s: %s", url, exc)
            self._generation += 1
            self._emit("transport_open_failed", {"url": url, "error": str(exc)})
            self._transition(Phase.IDLE)
            return False
        if generation != self._generation:
            # closed from inside the factory call; already handled by _on_close
            return False
        self._transport = transport
        if self._pending_start is not None:
            command, self._pending_start = self._pending_start, None
            self.send_command(command)
        return True

    def restart(self, config: Optional[SessionConfig] = None) -> bool:
        """From any phase: retire the transport, reset as new, start again."""
        config = config or self.config
        self.back_to_menu()
        return self.start(config)

    def back_to_menu(self) -> None:
        """From any phase: retire the transport and return to IDLE."""
        self._release_transport()
        if self.state.phase is not Phase.IDLE:
            self._transition(Phase.IDLE)
        self._reset_state()

    # -------------------------------------------------------------------------
    # commands
    # -------------------------------------------------------------------------

    def send_command(self, command: Command) -> bool:
        """Deliver a command; only while ACTIVE with a live transport."""
        if self.state.phase is not Phase.ACTIVE or self._transport is None:
            return False
        try:
            self._transport.send(command.to_wire())
        except TransportError as exc:
            logger.warning("command %s not delivered: %s", command.action.value, exc)
            self._emit("transport_error", {"error": str(exc), "during": "send"})
            return False
        self.state.commands_sent.append(command.action.value)
        return True

    def handle_key(self, symbol: str) -> bool:
        """Encode a key press against the current phase and send it."""
        command = commands.encode(symbol, self.state.phase, self.state.paused)
        if command is None:
            return False
        return self.send_command(command)

    def toggle_pause(self) -> bool:
        """Ask the server to flip pause. The local flag follows snapshots."""
        return self.send_command(commands.PAUSE_TOGGLE)

    def pause(self) -> bool:
        if self.state.paused:
            return False
        return self.toggle_pause()

    def resume(self) -> bool:
        if not self.state.paused:
            return False
        return self.toggle_pause()

    # -------------------------------------------------------------------------
    # transport callbacks
    # -------------------------------------------------------------------------

    def _on_open(self, generation: int) -> None:
        if generation != self._generation or self.state.phase is not Phase.CONNECTING:
            return
        self._transition(Phase.ACTIVE)
        config = self.config or self.default_config
        command = start_command(config.difficulty, config.speed)
        if self._transport is None:
            # opened from inside the factory call; start() sends it once bound
            self._pending_start = command
        else:
            self.send_command(command)

    def _on_message(self, generation: int, payload: Union[str, bytes]) -> None:
        if generation != self._generation or self.state.phase is not Phase.ACTIVE:
            return
        try:
            snapshot = decode(payload)
        except MalformedPayload as exc:
            logger.debug("dropping malformed payload: %s", exc)
            return
        if snapshot.is_terminal:
            self._apply_terminal(snapshot)
        else:
            self._apply_snapshot(snapshot)

    def _on_error(self, generation: int, exc: BaseException) -> None:
        if generation != self._generation:
            return
        logger.warning("transport error in phase %s: %s", self.state.phase.value, exc)
        self._emit("transport_error", {"error": str(exc), "during": self.state.phase.value})

    def _on_close(self, generation: int) -> None:
        if generation != self._generation:
            return
        phase = self.state.phase
        self._release_transport()
        if phase is Phase.CONNECTING:
            self._emit("transport_open_failed", {"url": self._session_url(self.client_id),
                                                 "error": "closed before open"})
            self._transition(Phase.IDLE)
        elif phase is Phase.ACTIVE:
            self.state.abnormal_close = True
            self._emit("abnormal_close", {"lasers_passed": self.state.lasers_passed})
            self._transition(Phase.TERMINATED)

    # -------------------------------------------------------------------------
    # message application
    # -------------------------------------------------------------------------

    def _apply_snapshot(self, snapshot: Snapshot) -> None:
        previous = self.state.lasers_passed
        self.state.last_snapshot = snapshot
        self.state.paused = snapshot.paused
        self.state.snapshots_applied += 1
        # one notification per newly reached counter value, never retroactive
        for count in range(previous + 1, snapshot.lasers_passed + 1):
            self.state.lasers_passed = count
            self._emit("laser_passed", {"lasers_passed": count, "score": snapshot.score})

    def _apply_terminal(self, snapshot: Snapshot) -> None:
        if self.state.terminal_recorded:
            return
        self.state.terminal_recorded = True
        self.state.last_snapshot = snapshot
        self.state.paused = snapshot.paused

        config = self.config or self.default_config
        record = None
        if snapshot.score > 0:
            try:
                record = self.ledger.record(snapshot.score, snapshot.won, config.player_name)
            except OSError as exc:
                logger.warning("final score %s not saved: %s", snapshot.score, exc)
                self._emit("ledger_write_failed", {"score": snapshot.score, "error": str(exc)})
        self.state.final = FinalOutcome(
            score=snapshot.score,
            won=snapshot.won,
            recorded=record is not None,
            snapshot=snapshot,
            record=record,
        )
        self._release_transport()
        self._transition(Phase.TERMINATED)
        self._emit("session_terminal", {
            "outcome": "won" if snapshot.won else "lost",
            "score": snapshot.score,
            "recorded": record is not None,
            "progress": snapshot.progress,
            "time_elapsed": snapshot.time_elapsed,
        })
