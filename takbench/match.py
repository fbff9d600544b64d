"""
Match System
Referees one game between two engine sessions
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from .board import DEFAULT_MAX_MOVES, Board, IllegalMove
from .ptn import PtnError, move_to_ptn, parse_move
from .results import Color, GameResult, Reason, Unterminated, Win, describe, result_token, is_terminal
from .schedule import ScheduleEntry, TimeControl
from .tei_interface import (
    EngineState, HandshakeTimeout, MoveTimeout, ProcessExit, SearchResult, TEIEngine,
)
from .tei_protocol import EngineFault, ProtocolError

logger = logging.getLogger(__name__)

FAULT_REASONS = {
    MoveTimeout: Reason.TIMEOUT,
    ProcessExit: Reason.CRASH,
    HandshakeTimeout: Reason.FORFEIT,
    ProtocolError: Reason.PROTOCOL_ERROR,
}


def fault_reason(error: EngineFault) -> Reason:
    for fault_type, reason in FAULT_REASONS.items():
        if isinstance(error, fault_type):
            return reason
    return Reason.PROTOCOL_ERROR


class MatchResult:
    """Container for game results"""

    def __init__(self, entry: ScheduleEntry, white_name: str, black_name: str):
        self.entry = entry
        self.white_name = white_name
        self.black_name = black_name
        self.result: GameResult = Unterminated()
        self.moves: List[str] = []
        self.comments: List[str] = []
        self.time_white: int = 0
        self.time_black: int = 0
        self.faulted: Set[Color] = set()
        self.crashed: Set[Color] = set()
        self.error: str = ""
        self.start_time: Optional[datetime] = None
        self.duration: float = 0.0

    @property
    def round_number(self) -> int:
        return self.entry.round_number

    @property
    def reason(self) -> str:
        return describe(self.result)

    def to_dict(self) -> Dict:
        return {
            "round": self.entry.round_number + 1,
            "white": self.white_name,
            "black": self.black_name,
            "result": result_token(self.result),
            "reason": self.reason,
            "error": self.error,
            "moves": len(self.moves),
            "opening": self.entry.opening,
            "time_white": self.time_white,
            "time_black": self.time_black,
            "duration_seconds": round(self.duration, 3),
        }

    def to_ptn(self, event: str = "takbench", site: str = "local") -> str:
        """Render the game as PTN"""
        entry = self.entry
        date = (self.start_time or datetime.now()).strftime("%Y.%m.%d")
        headers = [
            ("Site", site),
            ("Event", event),
            ("Date", date),
            ("Round", str(entry.round_number + 1)),
            ("Player1", self.white_name),
            ("Player2", self.black_name),
            ("Size", str(entry.size)),
            ("Komi", f"{entry.komi:g}"),
        ]
        if entry.opening:
            headers.append(("TPS", entry.opening))
        headers += [
            ("Clock", str(entry.time_control)),
            ("Result", result_token(self.result)),
            ("Termination", self.reason),
        ]
        lines = [f'[{key} "{value}"]' for key, value in headers]
        lines.append("")

        board = Board.from_tps(entry.opening) if entry.opening else Board(entry.size)
        ply = board.ply
        body: List[str] = []
        if ply % 2 == 1 and self.moves:
            body.append(f"{ply // 2 + 1}. --")
        for move, comment in zip(self.moves, self.comments):
            if ply % 2 == 0:
                body.append(f"{ply // 2 + 1}.")
            body.append(f"{move} {{{comment}}}" if comment else move)
            ply += 1
        body.append(result_token(self.result))
        lines.append(" ".join(body))
        return "\n".join(lines) + "\n"


class Match:
    """
    Tak game between two engine sessions

    Features:
    - Turn order and clock enforcement
    - Move validation through the board model
    - Fault-to-result mapping for every engine failure
    - Position relay to both sessions after every ply
    - Live updates via callback
    """

    def __init__(self,
                 entry: ScheduleEntry,
                 white: TEIEngine,
                 black: TEIEngine,
                 white_name: Optional[str] = None,
                 black_name: Optional[str] = None,
                 white_tc: Optional[TimeControl] = None,
                 black_tc: Optional[TimeControl] = None,
                 max_moves: int = DEFAULT_MAX_MOVES,
                 sink: Optional[logging.Logger] = None):
        """
        Initialize match

        Args:
            entry: Scheduled game (opening, size, komi, time control)
            white: READY session playing White
            black: READY session playing Black
            white_name: Display name for White
            black_name: Display name for Black
            white_tc: Per-engine time control overriding the entry's
            black_tc: Per-engine time control overriding the entry's
            max_moves: Full moves before the game is drawn
            sink: Logger for game progress
        """
        self.entry = entry
        self.sessions = {Color.WHITE: white, Color.BLACK: black}
        self.names = {
            Color.WHITE: white_name or white.name,
            Color.BLACK: black_name or black.name,
        }
        self.time_controls = {
            Color.WHITE: white_tc or entry.time_control,
            Color.BLACK: black_tc or entry.time_control,
        }
        self.clocks = {color: tc.base_ms for color, tc in self.time_controls.items()}
        self.max_moves = max_moves
        self.sink = sink or logger

        if entry.opening:
            self.board = Board.from_tps(entry.opening, entry.komi, max_moves)
        else:
            self.board = Board(entry.size, entry.komi, max_moves)
        if self.board.size != entry.size:
            raise ValueError(f"Opening {entry.opening!r} is not a {entry.size}x{entry.size} position")

    def play(self, update_callback: Optional[Callable] = None) -> MatchResult:
        """
        Play the game to a terminal result or a fault

        Args:
            update_callback: Called after each ply with (board, ptn_move, search_result)

        Returns:
            MatchResult object
        """
        result = MatchResult(self.entry, self.names[Color.WHITE], self.names[Color.BLACK])
        result.start_time = datetime.now()
        started = time.monotonic()
        opening = self.entry.opening
        actor = Color.WHITE

        self.sink.info(f"Game {self.entry.round_number + 1}: "
                       f"{result.white_name} (White) vs {result.black_name} (Black)")
        try:
            for actor in Color:
                self.sessions[actor].new_game(self.entry.size, self.entry.komi)
            for actor in Color:
                self.sessions[actor].set_position(opening, result.moves)

            while not is_terminal(self.board.terminal_status()):
                actor = self.board.to_move
                search = self._request_move(actor)
                move = self._decode(actor, search)
                self.board.apply(move)

                tc = self.time_controls[actor]
                self.clocks[actor] = max(0, self.clocks[actor] - search.elapsed_ms) + tc.increment_ms
                ptn_move = move_to_ptn(move, self.board.size)
                result.moves.append(ptn_move)
                result.comments.append(_score_comment(search))

                self.sink.debug(f"Game {self.entry.round_number + 1} ply {len(result.moves)}: "
                                f"{self.names[actor]} plays {ptn_move} "
                                f"({search.elapsed_ms}ms, {self.clocks[actor]}ms left)")

                if update_callback:
                    try:
                        update_callback(self.board.copy(), ptn_move, search)
                    except Exception as e:
                        self.sink.warning(f"Update callback error: {e}")

                if not is_terminal(self.board.terminal_status()):
                    actor = self.board.to_move
                    self.sessions[actor].set_position(opening, result.moves)

            result.result = self.board.terminal_status()

        except IllegalMove as e:
            self.sink.warning(f"{self.names[actor]} made an illegal move: {e}")
            result.result = Win(actor.other(), Reason.ILLEGAL_MOVE)
            result.faulted.add(actor)
            result.error = str(e)
        except EngineFault as e:
            self.sink.warning(f"{self.names[actor]} faulted: {e}")
            result.result = Win(actor.other(), fault_reason(e))
            result.faulted.add(actor)
            result.error = str(e)

        finally:
            for color, session in self.sessions.items():
                if session.state is EngineState.CRASHED:
                    result.crashed.add(color)
                else:
                    session.end_game()
                    if session.state is EngineState.CRASHED:
                        result.crashed.add(color)

        result.time_white = self.clocks[Color.WHITE]
        result.time_black = self.clocks[Color.BLACK]
        result.duration = time.monotonic() - started
        self.sink.info(f"Game {self.entry.round_number + 1} finished: "
                       f"{result_token(result.result)} ({result.reason}) after {len(result.moves)} plies")
        return result

    def _request_move(self, color: Color) -> SearchResult:
        tc = {c: self.time_controls[c] for c in Color}
        return self.sessions[color].go(
            wtime=self.clocks[Color.WHITE],
            btime=self.clocks[Color.BLACK],
            winc=tc[Color.WHITE].increment_ms,
            binc=tc[Color.BLACK].increment_ms,
            remaining_ms=self.clocks[color],
        )

    def _decode(self, color: Color, search: SearchResult):
        try:
            return parse_move(search.move, self.board.size)
        except PtnError as e:
            raise ProtocolError(f"{self.names[color]} sent unreadable move {search.move!r}: {e}") from e


def _score_comment(search: SearchResult) -> str:
    info = search.info
    if "score_cp" not in info:
        return ""
    return f"{info['score_cp'] / 100:+.2f}/{info.get('depth', 0)} {search.elapsed_ms / 1000:.2f}s"
