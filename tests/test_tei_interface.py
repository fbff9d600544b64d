"""
Tests for the engine session, driven against the scripted fake engine.
"""

import time

import pytest

from takbench.tei_interface import (
    EngineState, HandshakeTimeout, MoveTimeout, ProcessExit, SearchResult,
    SpawnError, TEIEngine,
)
from takbench.tei_protocol import EngineFault, OptionType


def wait_for(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class TestHandshake:
    """Tests for starting engines."""

    def test_handshake_reaches_ready(self, make_engine, sink):
        """id and option lines are recorded during the handshake."""
        with TEIEngine(make_engine(), sink=sink) as engine:
            assert engine.state is EngineState.READY
            assert engine.engine_name == "Fake normal"
            assert engine.author == "Test Suite"
            assert engine.options["Threads"].type is OptionType.SPIN
            assert engine.options["Style"].vars == ("calm", "wild")
            assert engine.is_alive

    def test_supported_options_are_sent(self, make_engine, sink):
        config = make_engine(options={"Threads": 4, "Style": "wild"})
        with TEIEngine(config, sink=sink):
            pass
        sent = sink.handler.messages
        assert ">> fake-normal: setoption name Threads value 4" in sent
        assert ">> fake-normal: setoption name Style value wild" in sent

    def test_unsupported_options_are_skipped(self, make_engine, sink):
        """Undeclared or out-of-range options produce warnings, not failures."""
        config = make_engine(options={"Threads": 99, "Missing": "1"})
        with TEIEngine(config, sink=sink) as engine:
            assert engine.state is EngineState.READY
        messages = sink.handler.messages
        assert not any("setoption name Threads" in m for m in messages)
        assert any("does not accept Threads=99" in m for m in messages)
        assert any("does not declare option Missing" in m for m in messages)

    def test_unexpected_lines_are_tolerated(self, make_engine, sink):
        with TEIEngine(make_engine("chatty"), sink=sink) as engine:
            assert engine.state is EngineState.READY

    def test_missing_teiok_times_out(self, make_engine, sink):
        engine = TEIEngine(make_engine("nohandshake"), startup_timeout=0.5, sink=sink)
        with pytest.raises(HandshakeTimeout):
            with engine:
                pass
        assert engine.state is EngineState.TERMINATED
        assert engine.process is None

    def test_handshake_timeout_is_engine_fault(self):
        assert issubclass(HandshakeTimeout, EngineFault)

    def test_spawn_error(self, make_engine, sink):
        """A missing executable is a spawn error, not an engine fault."""
        config = make_engine()
        config.path = "/nonexistent/takbench-engine"
        engine = TEIEngine(config, sink=sink)
        with pytest.raises(SpawnError):
            engine.start()
        assert not issubclass(SpawnError, EngineFault)


class TestStderr:
    def test_stderr_forwarded_unmodified(self, make_engine, sink):
        """Engine stderr reaches the sink line by line, as written."""
        with TEIEngine(make_engine("chatty"), sink=sink):
            assert wait_for(lambda: "fake engine warming up" in sink.handler.messages)


class TestSearch:
    """Tests for games and move requests."""

    def test_new_game_sends_half_komi(self, make_engine, sink):
        with TEIEngine(make_engine(), sink=sink) as engine:
            engine.new_game(5, komi=2.0)
            assert engine.state is EngineState.IN_GAME
        assert ">> fake-normal: teinewgame 5" in sink.handler.messages
        assert ">> fake-normal: setoption name HalfKomi value 4" in sink.handler.messages

    def test_no_half_komi_without_komi(self, make_engine, sink):
        """HalfKomi is declared by the engine but only set when komi is non-zero."""
        with TEIEngine(make_engine(), sink=sink) as engine:
            engine.new_game(5)
        assert any(m.startswith("<< ") and "option name HalfKomi" in m for m in sink.handler.messages)
        assert not any(m.startswith(">> ") and "setoption name HalfKomi" in m
                       for m in sink.handler.messages)

    def test_new_game_requires_ready(self, make_engine, sink):
        with TEIEngine(make_engine(), sink=sink) as engine:
            engine.new_game(5)
            with pytest.raises(RuntimeError):
                engine.new_game(5)

    def test_go_returns_best_move(self, make_engine, sink):
        with TEIEngine(make_engine(), sink=sink) as engine:
            engine.new_game(5)
            engine.set_position(None, ["a1"])
            result = engine.go(10000, 10000, 0, 0, remaining_ms=10000)
            assert isinstance(result, SearchResult)
            assert result.move == "b1"
            assert result.info["score_cp"] == 12
            assert result.info["depth"] == 1
            assert result.elapsed_ms >= 0
            assert engine.state is EngineState.IN_GAME
            engine.end_game()
            assert engine.state is EngineState.READY

    def test_go_from_tps(self, make_engine, sink):
        with TEIEngine(make_engine(), sink=sink) as engine:
            engine.new_game(5)
            engine.set_position("x5/x5/x5/x5/2,1,x3 1 2", ["c1"])
            assert engine.go(10000, 10000, 0, 0, remaining_ms=10000).move == "d1"

    def test_unknown_lines_while_searching(self, make_engine, sink):
        with TEIEngine(make_engine("chatty"), sink=sink) as engine:
            engine.new_game(5)
            engine.set_position()
            assert engine.go(10000, 10000, 0, 0, remaining_ms=10000).move == "a1"

    def test_go_requires_game(self, make_engine, sink):
        with TEIEngine(make_engine(), sink=sink) as engine:
            with pytest.raises(RuntimeError):
                engine.go(1000, 1000, 0, 0, remaining_ms=1000)

    def test_move_timeout(self, make_engine, sink):
        """A silent engine times out and is told to stop; it can still resync."""
        engine = TEIEngine(make_engine("silent"), move_overhead_ms=50, sink=sink)
        with engine:
            engine.new_game(5)
            engine.set_position()
            start = time.monotonic()
            with pytest.raises(MoveTimeout):
                engine.go(200, 200, 0, 0, remaining_ms=200)
            assert time.monotonic() - start < 3.0
            assert ">> fake-silent: stop" in sink.handler.messages
            engine.end_game()
            assert engine.state is EngineState.READY

    def test_move_timeout_when_stop_cannot_be_sent(self, make_engine, sink, monkeypatch):
        """An engine gone by the deadline still counts as a timeout."""
        engine = TEIEngine(make_engine("silent"), move_overhead_ms=50, sink=sink)
        with engine:
            engine.new_game(5)
            engine.set_position()
            send = engine.send_command

            def send_without_stop(command):
                if command == "stop":
                    raise ProcessExit("pipe closed")
                send(command)

            monkeypatch.setattr(engine, "send_command", send_without_stop)
            with pytest.raises(MoveTimeout):
                engine.go(200, 200, 0, 0, remaining_ms=200)
            monkeypatch.undo()
        assert any("Could not stop fake-silent" in m for m in sink.handler.messages)

    def test_crash_while_searching(self, make_engine, sink):
        engine = TEIEngine(make_engine("crash"), sink=sink)
        with engine:
            engine.new_game(5)
            engine.set_position()
            with pytest.raises(ProcessExit):
                engine.go(5000, 5000, 0, 0, remaining_ms=5000)
            assert engine.state is EngineState.CRASHED
            assert wait_for(lambda: not engine.is_alive)
            engine.end_game()
            assert engine.state is EngineState.CRASHED

    def test_restart_after_crash(self, make_engine, sink):
        engine = TEIEngine(make_engine("crash"), sink=sink)
        with engine:
            engine.new_game(5)
            engine.set_position()
            with pytest.raises(ProcessExit):
                engine.go(5000, 5000, 0, 0, remaining_ms=5000)
            engine.restart()
            assert engine.state is EngineState.READY
            assert engine.is_alive


class TestShutdown:
    def test_shutdown_terminates(self, make_engine, sink):
        engine = TEIEngine(make_engine(), sink=sink)
        engine.start()
        engine.handshake()
        process = engine.process
        engine.shutdown()
        assert engine.state is EngineState.TERMINATED
        assert engine.process is None
        assert process.returncode is not None

    def test_shutdown_is_idempotent(self, make_engine, sink):
        engine = TEIEngine(make_engine(), sink=sink)
        with engine:
            pass
        engine.shutdown()
        assert engine.state is EngineState.TERMINATED
