"""
racer.py - Q-Racing Terminal Client

Click CLI with rich output.

Commands:
    play             connect to the race server and play from the terminal
    scores           show the persisted high-score list
    clear-scores     empty the high-score list
    validate-config  check a YAML/JSON config file

Exit codes:
    0: success
    1: actionable issue (invalid config, session could not start)
    2: fatal error (missing file, bad input)

In play, each line typed on stdin is one key symbol: h, a, d, m, p, 1, 2,
or the names left, right, esc. q returns to the menu and exits.
"""

import asyncio
import json
import logging
import sys
import threading
from contextlib import ExitStack
from typing import Any, Dict, Iterable, Optional

import click
from rich.console import Console
from rich.table import Table

import config_schema
from config_schema import RaceConfig
from kv_store import JsonFileStore
from projector import snapshot_projection, visible_lanes
from race.constants import Phase
from race.types_state import FinalOutcome, Snapshot
from receipts import write_receipt_jsonl
from score_ledger import ScoreLedger
from session import SessionManager
from transport import WebSocketTransport

console = Console()

KEY_ALIASES = {
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "esc": "Escape",
}
QUIT_KEY = "q"
RENDER_INTERVAL_S = 0.25


# =============================================================================
# Output helpers
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message with red X."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow warning sign."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def _prob_bar(p: float, width: int = 10) -> str:
    filled = int(round(min(max(p, 0.0), 1.0) * width))
    return "█" * filled + "░" * (width - filled)


def render_snapshot(snapshot: Snapshot) -> str:
    """One status line: per-universe lane bars, score, progress."""
    lanes = snapshot_projection(snapshot)
    parts = []
    for label, pair in (("A", lanes.universe_a), ("B", lanes.universe_b)):
        shown = ",".join(str(lane) for lane in visible_lanes(pair)) or "-"
        parts.append(f"{label} [{_prob_bar(pair[0])}|{_prob_bar(pair[1])}] lanes {shown}")
    status = "PAUSED" if snapshot.paused else f"{snapshot.progress:5.1f}%"
    return f"{'  '.join(parts)}  score {snapshot.score:.0f}  lasers {snapshot.lasers_passed}  {status}"


def _load_config(path: Optional[str]) -> RaceConfig:
    if path is None:
        return config_schema.default()
    return config_schema.load(path)


def _ledger(config: RaceConfig) -> ScoreLedger:
    return ScoreLedger(JsonFileStore(config.scores_path), max_entries=config.max_scores)


# =============================================================================
# play
# =============================================================================

def _read_keys(lines: Iterable[str], loop: asyncio.AbstractEventLoop,
               manager: SessionManager, done: asyncio.Event) -> None:
    for line in lines:
        symbol = line.strip()
        if not symbol:
            continue
        if symbol == QUIT_KEY:
            loop.call_soon_threadsafe(manager.back_to_menu)
            loop.call_soon_threadsafe(done.set)
            return
        loop.call_soon_threadsafe(manager.handle_key, KEY_ALIASES.get(symbol.lower(), symbol))


async def run_session(
    config: RaceConfig,
    ledger: ScoreLedger,
    receipts_fh=None,
    keys: Optional[Iterable[str]] = None,
) -> Optional[FinalOutcome]:
    """
    Play one session to its end; returns the final outcome if any.

    keys yields one key symbol per line and defaults to stdin.
    """
    loop = asyncio.get_running_loop()
    done = asyncio.Event()
    manager = SessionManager(
        WebSocketTransport,
        ledger,
        session_url=config.session_url,
        default_config=config.session_config(),
    )

    def observe(receipt: Dict[str, Any]) -> None:
        if receipts_fh is not None:
            write_receipt_jsonl(receipt, receipts_fh)
        kind = receipt["receipt_type"]
        if kind == "phase_change":
            if receipt["to"] in (Phase.TERMINATED.value, Phase.IDLE.value):
                done.set()
        elif kind == "laser_passed":
            console.print(f"[cyan]⚡ laser passed ({receipt['lasers_passed']})[/cyan]")
        elif kind in ("transport_error", "transport_open_failed", "ledger_write_failed"):
            print_warning(f"{kind}: {receipt['error']}")

    manager.subscribe(observe)
    console.print(f"[dim]client {manager.client_id} -> {config.session_url(manager.client_id)}[/dim]")
    if not manager.start():
        return None

    lines = sys.stdin if keys is None else keys
    threading.Thread(target=_read_keys, args=(lines, loop, manager, done), daemon=True).start()
    rendered = 0
    while not done.is_set():
        try:
            await asyncio.wait_for(done.wait(), timeout=RENDER_INTERVAL_S)
        except asyncio.TimeoutError:
            pass
        snapshot = manager.last_snapshot
        if snapshot is not None and manager.state.snapshots_applied != rendered:
            rendered = manager.state.snapshots_applied
            console.print(render_snapshot(snapshot))

    final = manager.final
    manager.back_to_menu()
    return final


@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(), default=None,
              help="YAML/JSON config file")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str]) -> None:
    """Q-Racing terminal client."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


@cli.command("play")
@click.option("--difficulty", type=click.Choice(config_schema.DIFFICULTIES), default=None)
@click.option("--speed", type=float, default=None)
@click.option("--name", "player_name", default=None, help="Player name for the score list")
@click.option("--server", "server_url", default=None, help="WebSocket base URL")
@click.option("--receipts", "receipts_path", type=click.Path(), default=None,
              help="Append session receipts to this JSONL file")
@click.option("--verbose", "-v", is_flag=True, help="Log transport diagnostics")
@click.pass_context
def play_cmd(ctx: click.Context, difficulty, speed, player_name, server_url, receipts_path, verbose) -> None:
    """Connect to the race server and play one session."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    try:
        config = _load_config(ctx.obj["config_path"]).with_overrides(
            difficulty=difficulty, speed=speed, player_name=player_name,
            server_url=server_url, receipts_path=receipts_path,
        )
    except FileNotFoundError as e:
        print_error(str(e))
        sys.exit(2)
    except ValueError as e:
        print_error(f"Invalid configuration: {e}")
        sys.exit(1)

    with ExitStack() as stack:
        fh = None
        if config.receipts_path:
            fh = stack.enter_context(open(config.receipts_path, "a", encoding="utf-8"))
        final = asyncio.run(run_session(config, _ledger(config), fh))

    if final is None:
        print_warning("Session ended without a final result")
        sys.exit(1)
    headline = "QUANTUM SUCCESS!" if final.won else "WAVEFUNCTION COLLAPSED"
    console.print(f"[bold]{headline}[/bold]  final score {final.score:.0f}")
    snap = final.snapshot
    console.print(
        f"Hadamard gates: {snap.hadamard_uses}  measurements: {snap.successful_measures}  "
        f"survived: {int(snap.time_elapsed)}s  progress: {snap.progress:.1f}%"
    )
    if final.recorded:
        print_success("Score saved")


# =============================================================================
# scores
# =============================================================================

@cli.command("scores")
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")
@click.pass_context
def scores_cmd(ctx: click.Context, output: str) -> None:
    """Show the high-score list, most recent first."""
    try:
        config = _load_config(ctx.obj["config_path"])
    except (FileNotFoundError, ValueError) as e:
        print_error(str(e))
        sys.exit(2)
    ledger = _ledger(config)
    records = ledger.load()

    if output == "json":
        click.echo(json.dumps([r.to_dict() for r in records], indent=2))
        return
    if not records:
        console.print("[dim]No scores yet[/dim]")
        return
    table = Table(title=f"High Scores (best {ledger.best():.0f})")
    table.add_column("#", justify="right")
    table.add_column("Player")
    table.add_column("Score", justify="right")
    table.add_column("Outcome")
    table.add_column("When")
    for idx, record in enumerate(records, start=1):
        outcome = "[green]won[/green]" if record.won else "[red]lost[/red]"
        table.add_row(str(idx), record.player_name, f"{record.score:.0f}", outcome, record.timestamp[:19])
    console.print(table)


@cli.command("clear-scores")
@click.option("--yes", is_flag=True, help="Skip confirmation")
@click.pass_context
def clear_scores_cmd(ctx: click.Context, yes: bool) -> None:
    """Empty the high-score list."""
    try:
        config = _load_config(ctx.obj["config_path"])
    except (FileNotFoundError, ValueError) as e:
        print_error(str(e))
        sys.exit(2)
    if not yes:
        click.confirm("Clear all scores?", abort=True)
    _ledger(config).clear()
    print_success("Scores cleared")


# =============================================================================
# validate-config
# =============================================================================

@cli.command("validate-config")
@click.argument("config_path", type=click.Path(exists=True))
@click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")
def validate_config_cmd(config_path: str, output: str) -> None:
    """Validate a config file without self-healing it."""
    try:
        config = config_schema.load(config_path, strict=True)
    except ValueError as e:
        if output == "json":
            click.echo(json.dumps({"valid": False, "error": str(e)}))
        else:
            print_error(f"Invalid config: {e}")
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps({"valid": True, "config": config.to_dict()}, indent=2))
    else:
        print_success(f"{config_path} is valid")
        console.print(f"[dim]server:[/dim] {config.server_url}  "
                      f"[dim]difficulty:[/dim] {config.difficulty}  [dim]speed:[/dim] {config.speed}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
