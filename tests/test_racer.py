"""
tests/test_racer.py - Q-Racing CLI

Tests for play, scores, clear-scores and validate-config, plus snapshot
rendering. play runs against a local websockets server.
Exit codes:
  - 0: success
  - 1: validation issue or no final result (actionable)
  - 2: fatal error (missing file, bad input)
"""

import asyncio
import io
import json
import socket
import threading

import pytest
import websockets
from click.testing import CliRunner
from websockets.exceptions import ConnectionClosed

from config_schema import RaceConfig
from kv_store import JsonFileStore, MemoryStore
from race.constants import MessageKind
from race.types_state import Snapshot
from racer import cli, render_snapshot, run_session
from score_ledger import ScoreLedger


@pytest.fixture
def cli_runner():
    """Create a Click test runner."""
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    scores = tmp_path / "scores.json"
    path = tmp_path / "race.json"
    path.write_text(json.dumps({"scores_path": str(scores), "player_name": "Cli"}))
    return path, scores


class TestScores:

    def test_no_scores(self, cli_runner, config_file):
        path, _ = config_file
        result = cli_runner.invoke(cli, ["-c", str(path), "scores"])
        assert result.exit_code == 0
        assert "No scores yet" in result.output

    def test_scores_json(self, cli_runner, config_file):
        path, scores = config_file
        ledger = ScoreLedger(JsonFileStore(str(scores)))
        ledger.record(10, False, "first")
        ledger.record(20, True, "second")
        result = cli_runner.invoke(cli, ["-c", str(path), "scores", "-o", "json"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert [d["player_name"] for d in data] == ["second", "first"]

    def test_scores_table(self, cli_runner, config_file):
        path, scores = config_file
        ScoreLedger(JsonFileStore(str(scores))).record(321, True, "tabled")
        result = cli_runner.invoke(cli, ["-c", str(path), "scores"])
        assert result.exit_code == 0
        assert "tabled" in result.output
        assert "321" in result.output

    def test_table_title_shows_best(self, cli_runner, config_file):
        path, scores = config_file
        ledger = ScoreLedger(JsonFileStore(str(scores)))
        ledger.record(500, True, "high")
        ledger.record(40, False, "low")
        result = cli_runner.invoke(cli, ["-c", str(path), "scores"])
        assert result.exit_code == 0
        assert "best 500" in result.output

    def test_malformed_config(self, cli_runner, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("speed: [1.0\n")
        result = cli_runner.invoke(cli, ["-c", str(path), "scores"])
        assert result.exit_code == 2

    def test_missing_config(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["-c", str(tmp_path / "none.json"), "scores"])
        assert result.exit_code == 2

    def test_clear_scores(self, cli_runner, config_file):
        path, scores = config_file
        ScoreLedger(JsonFileStore(str(scores))).record(5, False, "gone")
        result = cli_runner.invoke(cli, ["-c", str(path), "clear-scores", "--yes"])
        assert result.exit_code == 0
        assert ScoreLedger(JsonFileStore(str(scores))).load() == []

    def test_clear_scores_aborted(self, cli_runner, config_file):
        path, scores = config_file
        ScoreLedger(JsonFileStore(str(scores))).record(5, False, "kept")
        result = cli_runner.invoke(cli, ["-c", str(path), "clear-scores"], input="n\n")
        assert result.exit_code == 1
        assert len(ScoreLedger(JsonFileStore(str(scores))).load()) == 1


class TestValidateConfig:

    def test_valid(self, cli_runner, config_file):
        path, _ = config_file
        result = cli_runner.invoke(cli, ["validate-config", str(path), "-o", "json"])
        assert result.exit_code == 0
        assert json.loads(result.output)["valid"] is True

    def test_invalid(self, cli_runner, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"speed": 99}))
        result = cli_runner.invoke(cli, ["validate-config", str(path), "-o", "json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["valid"] is False

    def test_malformed_yaml(self, cli_runner, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("difficulty: [hard\n")
        result = cli_runner.invoke(cli, ["validate-config", str(path), "-o", "json"])
        assert result.exit_code == 1
        assert json.loads(result.output)["valid"] is False

    def test_missing_path(self, cli_runner, tmp_path):
        result = cli_runner.invoke(cli, ["validate-config", str(tmp_path / "none.json")])
        assert result.exit_code == 2


class TestRender:

    def test_render_bell_state(self):
        s = 2 ** -0.5
        snap = Snapshot(kind=MessageKind.SNAPSHOT, quantum_state=(s, 0, 0, s), score=42,
                        lasers_passed=3, progress=12.5)
        line = render_snapshot(snap)
        assert "lanes 0,1" in line
        assert "score 42" in line
        assert "lasers 3" in line
        assert "12.5%" in line

    def test_render_paused(self):
        line = render_snapshot(Snapshot(kind=MessageKind.SNAPSHOT, paused=True))
        assert "PAUSED" in line
        assert "lanes 0" in line


# =============================================================================
# play / run_session against a local race server
# =============================================================================

TIMEOUT_S = 5.0

SNAPSHOT = {"type": "game_state", "data": {
    "quantum_state": [1, 0, 0, 0], "score": 40, "lasers_passed": 1}}
GAME_OVER = {"type": "game_over", "data": {
    "quantum_state": [0, 0, 0, 1], "score": 75, "lasers_passed": 1, "progress": 30.0}}


class RaceServer:
    """websockets server on its own thread and event loop, scripted per test."""

    def __init__(self, script):
        self.script = script
        self.received = []
        self.port = None
        self._ready = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def url(self):
        return f"ws://127.0.0.1:{self.port}/ws"

    def _serve(self):
        asyncio.run(self._main())

    async def _main(self):
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        async with websockets.serve(self._handler, "127.0.0.1", 0) as server:
            self.port = next(iter(server.sockets)).getsockname()[1]
            self._ready.set()
            await self._stop.wait()

    async def _handler(self, ws):
        try:
            self.received.append(json.loads(await ws.recv()))
            await self.script(ws)
            await ws.wait_closed()
        except ConnectionClosed:
            pass

    def __enter__(self):
        self._thread.start()
        assert self._ready.wait(TIMEOUT_S)
        return self

    def __exit__(self, *exc_info):
        self._loop.call_soon_threadsafe(self._stop.set)
        self._thread.join(TIMEOUT_S)


async def play_to_game_over(ws):
    await ws.send(json.dumps(SNAPSHOT))
    await ws.send(json.dumps(GAME_OVER))


async def hang_up(ws):
    await ws.close()


async def idle(ws):
    pass


def _free_port():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _receipt_types(path):
    return [json.loads(line)["receipt_type"] for line in path.read_text().splitlines()]


class TestPlay:

    def test_play_to_game_over(self, cli_runner, config_file, tmp_path):
        path, scores = config_file
        receipts = tmp_path / "receipts.jsonl"
        with RaceServer(play_to_game_over) as server:
            result = cli_runner.invoke(cli, [
                "-c", str(path), "play",
                "--server", server.url,
                "--difficulty", "hard",
                "--receipts", str(receipts),
            ])
        assert result.exit_code == 0, result.output
        assert "WAVEFUNCTION COLLAPSED" in result.output
        assert "final score 75" in result.output
        assert "progress: 30.0%" in result.output
        assert "Score saved" in result.output
        assert server.received == [{"action": "start", "difficulty": "hard", "speed": 1.0}]

        records = ScoreLedger(JsonFileStore(str(scores))).load()
        assert [(r.score, r.won, r.player_name) for r in records] == [(75.0, False, "Cli")]

        types = _receipt_types(receipts)
        assert types.count("session_terminal") == 1
        assert "laser_passed" in types

    def test_server_hang_up_has_no_final(self, cli_runner, config_file):
        path, scores = config_file
        with RaceServer(hang_up) as server:
            result = cli_runner.invoke(cli, ["-c", str(path), "play", "--server", server.url])
        assert result.exit_code == 1
        assert "without a final result" in result.output
        assert ScoreLedger(JsonFileStore(str(scores))).load() == []

    def test_refused_connection_has_no_final(self, cli_runner, config_file, tmp_path):
        path, _ = config_file
        receipts = tmp_path / "receipts.jsonl"
        result = cli_runner.invoke(cli, [
            "-c", str(path), "play",
            "--server", f"ws://127.0.0.1:{_free_port()}/ws",
            "--receipts", str(receipts),
        ])
        assert result.exit_code == 1
        assert "transport_open_failed" in _receipt_types(receipts)

    def test_invalid_override(self, cli_runner, config_file):
        path, _ = config_file
        result = cli_runner.invoke(cli, ["-c", str(path), "play", "--speed", "9"])
        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestRunSession:

    def test_quit_key_returns_to_menu(self):
        ledger = ScoreLedger(MemoryStore())
        receipts = io.StringIO()

        async def scenario(url):
            config = RaceConfig(server_url=url)
            return await asyncio.wait_for(
                run_session(config, ledger, receipts, keys=["", "q"]), TIMEOUT_S)

        with RaceServer(idle) as server:
            final = asyncio.run(scenario(server.url))
        assert final is None
        assert ledger.load() == []
        changes = [r for r in map(json.loads, receipts.getvalue().splitlines())
                   if r["receipt_type"] == "phase_change"]
        assert changes[-1]["to"] == "idle"

    def test_game_over_returns_final(self):
        ledger = ScoreLedger(MemoryStore())

        async def scenario(url):
            config = RaceConfig(server_url=url, player_name="Direct")
            return await asyncio.wait_for(run_session(config, ledger, keys=[]), TIMEOUT_S)

        with RaceServer(play_to_game_over) as server:
            final = asyncio.run(scenario(server.url))
        assert final.score == 75.0
        assert final.recorded
        assert ledger.load()[0].player_name == "Direct"
