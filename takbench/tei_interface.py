"""
TEI Engine Session
Drives one engine subprocess through handshake, new games and timed
move exchanges, classifying every way it can misbehave
"""

import logging
import queue
import subprocess
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence

from . import tei_protocol
from .engine_manager import EngineConfig
from .tei_protocol import (
    BestMove, EngineFault, IdCommand, Info, OptionCommand, ReadyOk, TeiOk, TeiOption,
    parse_engine_line,
)

logger = logging.getLogger(__name__)


class EngineState(Enum):
    SPAWNED = "spawned"
    HANDSHAKING = "handshaking"
    READY = "ready"
    IN_GAME = "in game"
    WAITING_FOR_MOVE = "waiting for move"
    CRASHED = "crashed"
    TERMINATED = "terminated"


class SpawnError(Exception):
    """The engine process could not be started"""


class HandshakeTimeout(EngineFault):
    """No teiok/readyok within the startup window"""


class MoveTimeout(EngineFault):
    """No bestmove before the side's clock ran out"""


class ProcessExit(EngineFault):
    """The engine process exited or closed its pipes"""


@dataclass
class SearchResult:
    move: str
    ponder: Optional[str]
    elapsed_ms: int
    info: Dict = field(default_factory=dict)


class TEIEngine:
    """
    TEI protocol session for one engine process

    Features:
    - Background reader threads for stdout and stderr
    - Explicit lifecycle state machine
    - Move deadlines taken from the side's remaining clock
    - Option negotiation against the options the engine declares
    - Guaranteed quit-then-kill teardown
    """

    def __init__(self,
                 config: EngineConfig,
                 startup_timeout: float = 10.0,
                 move_overhead_ms: int = 100,
                 sink: Optional[logging.Logger] = None):
        """
        Initialize TEI engine session

        Args:
            config: Engine configuration (command, options)
            startup_timeout: Seconds allowed for teiok and readyok replies
            move_overhead_ms: Grace added to every move deadline
            sink: Logger receiving diagnostics and engine stderr
        """
        self.config = config
        self.name = config.name
        self.startup_timeout = startup_timeout
        self.move_overhead_ms = move_overhead_ms
        self.sink = sink or logger

        self.process: Optional[subprocess.Popen] = None
        self.output_queue: queue.Queue = queue.Queue()
        self.state: Optional[EngineState] = None

        # Declared by the engine during the handshake
        self.engine_name = config.name
        self.author = "Unknown"
        self.options: Dict[str, TeiOption] = {}

    def start(self):
        """Spawn the engine process"""
        try:
            self.process = subprocess.Popen(
                self.config.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as e:
            self.state = EngineState.CRASHED
            raise SpawnError(f"Failed to start {self.name} ({' '.join(self.config.command)}): {e}") from e

        self.output_queue = queue.Queue()
        threading.Thread(
            target=self._read_output,
            args=(self.process.stdout, self.output_queue),
            name=f"{self.name}-stdout",
            daemon=True
        ).start()
        threading.Thread(
            target=self._drain_stderr,
            args=(self.process.stderr,),
            name=f"{self.name}-stderr",
            daemon=True
        ).start()

        self.state = EngineState.SPAWNED
        self.sink.info(f"{self.name} started: PID {self.process.pid}")

    def _read_output(self, stream, output_queue: queue.Queue):
        """Background thread: stdout lines into the queue, None on EOF"""
        try:
            for line in stream:
                output_queue.put(line.rstrip("\r\n"))
        except (OSError, ValueError) as e:
            self.sink.debug(f"{self.name} stdout closed: {e}")
        finally:
            stream.close()
            output_queue.put(None)

    def _drain_stderr(self, stream):
        """Background thread: forward stderr to the sink unmodified"""
        try:
            for line in stream:
                self.sink.info(line.rstrip("\r\n"))
        except (OSError, ValueError) as e:
            self.sink.debug(f"{self.name} stderr closed: {e}")
        finally:
            stream.close()

    def send_command(self, command: str):
        """Send one line to the engine"""
        if not self.process or not self.process.stdin:
            raise RuntimeError(f"Engine {self.name} not started")

        self.sink.debug(f">> {self.name}: {command}")
        try:
            self.process.stdin.write(command + "\n")
            self.process.stdin.flush()
        except (BrokenPipeError, OSError, ValueError) as e:
            self.state = EngineState.CRASHED
            raise ProcessExit(f"{self.name} cannot receive '{command}': {e}") from e

    def _next_line(self, deadline: float) -> Optional[str]:
        """
        Next line of engine output

        Args:
            deadline: time.monotonic() value to give up at

        Returns:
            The line, or None if the deadline passed

        Raises:
            ProcessExit: the engine closed stdout
        """
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            try:
                line = self.output_queue.get(timeout=min(remaining, 0.1))
            except queue.Empty:
                continue

            if line is None:
                self.state = EngineState.CRASHED
                code = self.process.poll() if self.process else None
                raise ProcessExit(f"{self.name} exited unexpectedly (exit code {code})")

            self.sink.debug(f"<< {self.name}: {line}")
            return line

    def _sync(self, description: str):
        """Send isready and wait for readyok, discarding anything before it"""
        self.send_command(tei_protocol.isready())
        deadline = time.monotonic() + self.startup_timeout
        while True:
            line = self._next_line(deadline)
            if line is None:
                raise HandshakeTimeout(f"{self.name} sent no readyok {description}")
            if isinstance(parse_engine_line(line), ReadyOk):
                return

    def handshake(self):
        """
        Run tei/teiok, send configured options and confirm with isready

        Raises:
            HandshakeTimeout: no teiok or readyok within the startup window
            ProtocolError: malformed id or option line
            ProcessExit: engine died during the handshake
        """
        self.state = EngineState.HANDSHAKING
        self.send_command(tei_protocol.tei())

        deadline = time.monotonic() + self.startup_timeout
        while True:
            line = self._next_line(deadline)
            if line is None:
                raise HandshakeTimeout(f"{self.name} sent no teiok within {self.startup_timeout}s")

            command = parse_engine_line(line)
            if isinstance(command, TeiOk):
                break
            if isinstance(command, IdCommand):
                if command.field == "name":
                    self.engine_name = command.value
                else:
                    self.author = command.value
            elif isinstance(command, OptionCommand):
                self.options[command.option.name] = command.option
            else:
                self.sink.info(f"{self.name}: unexpected message during handshake, ignoring: {line}")

        self._apply_options()
        self._sync("after handshake")
        self.state = EngineState.READY
        self.sink.info(f"{self.name} ready: {self.engine_name} by {self.author}, "
                       f"{len(self.options)} options")

    def _apply_options(self):
        for name, value in self.config.options.items():
            value = str(value)
            option = self.options.get(name)
            if option is None:
                self.sink.warning(f"{self.name} does not declare option {name}, skipping")
                continue
            if not option.supports(value):
                self.sink.warning(f"{self.name} does not accept {name}={value}, skipping")
                continue
            self.send_command(tei_protocol.setoption(name, value))

    def new_game(self, size: int, komi: float = 0.0):
        """
        Bind the session to a new game

        Args:
            size: Board size
            komi: Flat bonus for Black; sent as HalfKomi when non-zero
        """
        if self.state is not EngineState.READY:
            raise RuntimeError(f"{self.name} cannot start a game in state {self.state}")

        self.send_command(tei_protocol.teinewgame(size))
        if komi:
            self.send_command(tei_protocol.setoption("HalfKomi", str(int(komi * 2))))
        self._sync("after teinewgame")
        self.state = EngineState.IN_GAME

    def set_position(self, tps: Optional[str] = None, moves: Sequence[str] = ()):
        """
        Set board position

        Args:
            tps: Opening position (None for the empty board)
            moves: PTN moves played since the opening
        """
        self.send_command(tei_protocol.position(tps, moves))

    def go(self,
           wtime: int,
           btime: int,
           winc: int,
           binc: int,
           remaining_ms: int) -> SearchResult:
        """
        Ask for a move and wait for bestmove under a deadline

        Args:
            wtime: White time remaining (ms)
            btime: Black time remaining (ms)
            winc: White increment (ms)
            binc: Black increment (ms)
            remaining_ms: Clock of the side to move; the deadline is this plus the overhead

        Returns:
            SearchResult with the move text, ponder move, last info and elapsed time

        Raises:
            MoveTimeout: the deadline expired (stop is sent)
            ProtocolError: malformed line while searching
            ProcessExit: the engine died while searching
        """
        if self.state is not EngineState.IN_GAME:
            raise RuntimeError(f"{self.name} cannot search in state {self.state}")

        self.state = EngineState.WAITING_FOR_MOVE
        self.send_command(tei_protocol.go(wtime, btime, winc, binc))
        start = time.monotonic()
        deadline = start + (max(0, remaining_ms) + self.move_overhead_ms) / 1000
        last_info: Dict = {}

        while True:
            line = self._next_line(deadline)
            if line is None:
                self.state = EngineState.IN_GAME
                self.sink.warning(f"{self.name} exceeded its time ({remaining_ms}ms remaining)")
                try:
                    self.send_command(tei_protocol.stop())
                except ProcessExit as e:
                    self.sink.warning(f"Could not stop {self.name} after its timeout: {e}")
                raise MoveTimeout(f"{self.name} did not move within {remaining_ms}ms")

            try:
                command = parse_engine_line(line)
            except EngineFault:
                self.state = EngineState.IN_GAME
                raise

            if isinstance(command, BestMove):
                elapsed = int((time.monotonic() - start) * 1000)
                self.state = EngineState.IN_GAME
                return SearchResult(command.move, command.ponder, elapsed, last_info)
            if isinstance(command, Info):
                if command.fields:
                    last_info = command.fields
            else:
                self.sink.debug(f"{self.name}: ignoring {line}")

    def end_game(self):
        """Return to READY, draining any late output; CRASHED if the engine does not answer"""
        if self.state in (EngineState.CRASHED, EngineState.TERMINATED, None):
            return
        try:
            self._sync("after game")
        except EngineFault as e:
            self.sink.warning(f"{self.name} failed to resynchronize: {e}")
            self.state = EngineState.CRASHED
            return
        self.state = EngineState.READY

    @property
    def is_alive(self) -> bool:
        return self.process is not None and self.process.poll() is None

    def restart(self):
        """Replace the process with a fresh one and handshake again"""
        self.sink.info(f"Restarting {self.name}")
        self.shutdown()
        self.options = {}
        self.start()
        self.handshake()

    def shutdown(self, timeout: float = 5.0):
        """Send quit, wait for exit and kill the process if it lingers"""
        if self.process is None:
            return

        if self.process.poll() is None:
            try:
                self.send_command(tei_protocol.quit())
                self.process.wait(timeout=timeout)
                self.sink.info(f"{self.name} terminated gracefully")
            except (ProcessExit, subprocess.TimeoutExpired) as e:
                self.sink.warning(f"{self.name} did not quit ({e}), killing")
                self.process.kill()
                self.process.wait()
        else:
            self.process.wait()

        if self.process.stdin:
            try:
                self.process.stdin.close()
            except OSError as e:
                self.sink.debug(f"{self.name}: error closing stdin: {e}")
        self.process = None
        self.state = EngineState.TERMINATED

    def __enter__(self):
        """Context manager entry"""
        self.start()
        try:
            self.handshake()
        except BaseException:
            self.shutdown()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.shutdown()
