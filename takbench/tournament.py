"""
Tournament System
Runs a schedule of games on a bounded worker pool with pooled engine
sessions and keeps the standings
"""

import json
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from .engine_manager import EngineConfig
from .match import Match, MatchResult
from .ptn_writer import PtnWriter
from .results import Color, Draw, GameResult, Reason, Win, describe, result_token, score_for
from .schedule import ScheduleEntry
from .stats import TrinomialResult, elo_to_string
from .tei_interface import EngineState, SpawnError, TEIEngine
from .tei_protocol import EngineFault

logger = logging.getLogger(__name__)


class TournamentStats:
    """Tournament statistics for an engine"""

    def __init__(self, engine_name: str):
        self.engine_name = engine_name
        self.games_played = 0
        self.wins = 0
        self.losses = 0
        self.draws = 0
        self.points = 0.0  # Win=1, Draw=0.5, Loss=0
        self.wins_as_white = 0
        self.wins_as_black = 0
        self.faults = 0

    def add_result(self, points: float, color: Color, faulted: bool = False):
        """
        Add game result

        Args:
            points: 1.0, 0.5 or 0.0
            color: Colour this engine played
            faulted: The engine lost through its own fault
        """
        self.games_played += 1
        self.points += points
        if faulted:
            self.faults += 1

        if points == 1.0:
            self.wins += 1
            if color is Color.WHITE:
                self.wins_as_white += 1
            else:
                self.wins_as_black += 1
        elif points == 0.5:
            self.draws += 1
        else:
            self.losses += 1

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {
            "engine": self.engine_name,
            "games": self.games_played,
            "wins": self.wins,
            "losses": self.losses,
            "draws": self.draws,
            "points": self.points,
            "wins_white": self.wins_as_white,
            "wins_black": self.wins_as_black,
            "faults": self.faults,
            "score_percentage": (self.points / self.games_played * 100) if self.games_played > 0 else 0
        }


class Standings:
    """
    Cumulative scores per engine and per ordered engine pair

    All updates go through record(), under a lock.
    """

    def __init__(self, engine_names: Sequence[str]):
        self.engine_names = list(engine_names)
        self.stats = [TournamentStats(name) for name in engine_names]
        self.pairs: Dict[Tuple[int, int], TrinomialResult] = {}
        self.lock = threading.Lock()

    def record(self, entry: ScheduleEntry, result: GameResult, faulted: Set[Color] = frozenset()):
        with self.lock:
            white, black = entry.white_id, entry.black_id
            white_points = score_for(result, Color.WHITE)
            self.stats[white].add_result(white_points, Color.WHITE, Color.WHITE in faulted)
            self.stats[black].add_result(1.0 - white_points, Color.BLACK, Color.BLACK in faulted)
            if white != black:
                self._add_pair(white, black, white_points)
                self._add_pair(black, white, 1.0 - white_points)

    def _add_pair(self, engine_id: int, opponent_id: int, points: float):
        pair = self.pairs.setdefault((engine_id, opponent_id), TrinomialResult())
        if points == 1.0:
            pair.wins += 1
        elif points == 0.5:
            pair.draws += 1
        else:
            pair.losses += 1

    def get_standings(self) -> List[Dict]:
        """Engine stats sorted by points, then wins"""
        with self.lock:
            standings = [stats.to_dict() for stats in self.stats]
        standings.sort(key=lambda x: (x["points"], x["wins"]), reverse=True)
        return standings

    def pair_summaries(self) -> List[Dict]:
        """W/D/L and Elo estimate for each pairing, from the first engine's side"""
        with self.lock:
            pairs = sorted(self.pairs.items())
            summaries = []
            for (engine_id, opponent_id), record in pairs:
                if engine_id > opponent_id:
                    continue
                lower, elo, upper = record.elo_interval()
                summaries.append({
                    "engine": self.engine_names[engine_id],
                    "opponent": self.engine_names[opponent_id],
                    "games": record.count,
                    "wins": record.wins,
                    "draws": record.draws,
                    "losses": record.losses,
                    "score": round(record.score(), 4),
                    "elo": elo_to_string(elo),
                    "elo_lower": elo_to_string(lower),
                    "elo_upper": elo_to_string(upper),
                })
        return summaries


class SessionPool:
    """
    Idle engine sessions per engine id

    A session is used by one game at a time; concurrent games involving the
    same engine get their own processes. Spawning and handshaking happen
    outside the lock.
    """

    def __init__(self,
                 engines: Sequence[EngineConfig],
                 session_factory: Callable[..., TEIEngine] = TEIEngine,
                 startup_timeout: float = 10.0,
                 move_overhead_ms: int = 100,
                 sink: Optional[logging.Logger] = None):
        self.engines = list(engines)
        self.session_factory = session_factory
        self.startup_timeout = startup_timeout
        self.move_overhead_ms = move_overhead_ms
        self.sink = sink or logger
        self.idle: Dict[int, List[TEIEngine]] = {i: [] for i in range(len(self.engines))}
        self.spawned = 0
        self.lock = threading.Lock()

    def checkout(self, engine_id: int) -> TEIEngine:
        """
        An idle READY session, or a freshly spawned one

        Raises:
            SpawnError: the process could not be started
            EngineFault: the fresh process failed its handshake
        """
        with self.lock:
            if self.idle[engine_id]:
                return self.idle[engine_id].pop()

        session = self.session_factory(
            self.engines[engine_id],
            startup_timeout=self.startup_timeout,
            move_overhead_ms=self.move_overhead_ms,
            sink=self.sink,
        )
        session.start()
        with self.lock:
            self.spawned += 1
        try:
            session.handshake()
        except EngineFault:
            session.shutdown()
            raise
        return session

    def checkin(self, engine_id: int, session: TEIEngine):
        """Return a session after a game; crashed ones are shut down instead"""
        if session.state is not EngineState.READY:
            self.sink.info(f"Discarding {session.name} session in state {session.state}")
            session.shutdown()
            return
        with self.lock:
            self.idle[engine_id].append(session)

    def close(self):
        with self.lock:
            sessions = [s for idle in self.idle.values() for s in idle]
            for idle in self.idle.values():
                idle.clear()
        for session in sessions:
            session.shutdown()


class Tournament:
    """
    Tournament runner

    Features:
    - Bounded worker pool (concurrent games)
    - Session reuse between games, respawn after crashes
    - Forfeits for engines that cannot be started
    - Graceful stop between games
    - Ordered PTN output and JSON results
    """

    def __init__(self,
                 name: str,
                 engines: Sequence[EngineConfig],
                 schedule: Sequence[ScheduleEntry],
                 concurrency: int = 1,
                 ptn_writer: Optional[PtnWriter] = None,
                 session_factory: Callable[..., TEIEngine] = TEIEngine,
                 startup_timeout: float = 10.0,
                 move_overhead_ms: int = 100,
                 sink: Optional[logging.Logger] = None):
        """
        Initialize tournament

        Args:
            name: Tournament name
            engines: Engine configurations; schedule ids index this list
            schedule: Games to play, in round order
            concurrency: Maximum games played at once
            ptn_writer: Optional writer receiving every finished game
            session_factory: Builds engine sessions (TEIEngine)
            startup_timeout: Seconds allowed for engine handshakes
            move_overhead_ms: Grace added to move deadlines
            sink: Logger for tournament and engine diagnostics
        """
        if concurrency < 1:
            raise ValueError(f"Concurrency must be at least 1, got {concurrency}")

        self.name = name
        self.engines = list(engines)
        self.schedule = tuple(schedule)
        self.concurrency = concurrency
        self.ptn_writer = ptn_writer
        self.sink = sink or logger

        self.standings = Standings([e.name for e in self.engines])
        self.pool = SessionPool(self.engines, session_factory, startup_timeout,
                                move_overhead_ms, self.sink)
        self.games: List[Dict] = []
        self.broken: Set[int] = set()
        self.live: Dict[int, Dict] = {}
        self.lock = threading.Lock()
        self.stop_event = threading.Event()

        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None

        self.sink.info(f"Tournament created: {name} ({len(self.schedule)} games)")

    def request_stop(self):
        """Skip games that have not started yet"""
        self.sink.warning("Stop requested; finishing games in progress")
        self.stop_event.set()

    def run(self, update_callback: Optional[Callable] = None) -> Dict:
        """
        Play the whole schedule

        Args:
            update_callback: Called after each game with (game_info, standings)

        Returns:
            Tournament results dict
        """
        self.start_time = datetime.now()
        self.sink.info(f"Starting tournament {self.name}: {len(self.engines)} engines, "
                       f"{len(self.schedule)} games, concurrency {self.concurrency}")
        try:
            with ThreadPoolExecutor(max_workers=self.concurrency) as executor:
                futures = [executor.submit(self._run_entry, entry, update_callback)
                           for entry in self.schedule]
                for future in futures:
                    future.result()
        finally:
            self.pool.close()
            if self.ptn_writer:
                self.ptn_writer.close()
            self.end_time = datetime.now()

        return self.get_results()

    def _run_entry(self, entry: ScheduleEntry, callback: Optional[Callable]):
        if self.stop_event.is_set():
            if self.ptn_writer:
                self.ptn_writer.skip_round(entry.round_number)
            return

        with self.lock:
            broken = any(entry.involves(engine_id) for engine_id in self.broken)
        if broken:
            self._record_forfeit(entry, "engine could not be started")
            return

        white = black = None
        try:
            white = self.pool.checkout(entry.white_id)
            black = self.pool.checkout(entry.black_id)
        except SpawnError as e:
            self.sink.error(str(e))
            failed = entry.black_id if white is not None else entry.white_id
            with self.lock:
                self.broken.add(failed)
            if white is not None:
                self.pool.checkin(entry.white_id, white)
            self._record_forfeit(entry, str(e))
            return
        except EngineFault as e:
            # Handshake failures forfeit this game only
            self.sink.warning(str(e))
            if white is not None:
                self.pool.checkin(entry.white_id, white)
            failed = Color.BLACK if white is not None else Color.WHITE
            result = MatchResult(entry, self._name(entry.white_id), self._name(entry.black_id))
            self._record_result(result, Win(failed.other(), Reason.FORFEIT), {failed}, str(e), callback)
            return

        try:
            match = Match(
                entry, white, black,
                white_name=self._name(entry.white_id),
                black_name=self._name(entry.black_id),
                white_tc=self.engines[entry.white_id].get_time_control(),
                black_tc=self.engines[entry.black_id].get_time_control(),
                sink=self.sink,
            )
            with self.lock:
                self.live[entry.round_number] = self._live_snapshot(entry, match.board, [])

            def on_ply(board, ptn_move, search):
                with self.lock:
                    snapshot = self.live.get(entry.round_number)
                    if snapshot is not None:
                        snapshot["moves"].append(ptn_move)
                        snapshot["tps"] = board.to_tps()
                        snapshot["time_white"] = match.clocks[Color.WHITE]
                        snapshot["time_black"] = match.clocks[Color.BLACK]

            result = match.play(update_callback=on_ply)
        finally:
            with self.lock:
                self.live.pop(entry.round_number, None)
            self.pool.checkin(entry.white_id, white)
            self.pool.checkin(entry.black_id, black)

        self._record_result(result, result.result, result.faulted, result.error, callback)

    def _record_forfeit(self, entry: ScheduleEntry, error: str):
        with self.lock:
            white_broken = entry.white_id in self.broken
            black_broken = entry.black_id in self.broken
        if white_broken and black_broken:
            outcome: GameResult = Draw(Reason.FORFEIT)
            faulted = {Color.WHITE, Color.BLACK}
        elif white_broken:
            outcome = Win(Color.BLACK, Reason.FORFEIT)
            faulted = {Color.WHITE}
        else:
            outcome = Win(Color.WHITE, Reason.FORFEIT)
            faulted = {Color.BLACK}
        result = MatchResult(entry, self._name(entry.white_id), self._name(entry.black_id))
        self._record_result(result, outcome, faulted, error, None)

    def _record_result(self,
                       result: MatchResult,
                       outcome: GameResult,
                       faulted: Set[Color],
                       error: str,
                       callback: Optional[Callable]):
        result.result = outcome
        result.faulted = set(faulted)
        result.error = error
        self.standings.record(result.entry, outcome, result.faulted)

        game_info = result.to_dict()
        with self.lock:
            self.games.append(game_info)
            done = len(self.games)

        self.sink.info(f"Game {game_info['round']}/{len(self.schedule)} ({done} done): "
                       f"{result.white_name} vs {result.black_name}: "
                       f"{result_token(outcome)} ({describe(outcome)})")

        if self.ptn_writer:
            self.ptn_writer.add_game(result)

        if callback:
            try:
                callback(game_info, self.get_standings())
            except Exception as e:
                self.sink.warning(f"Callback error: {e}")

    def _name(self, engine_id: int) -> str:
        return self.engines[engine_id].name

    def _live_snapshot(self, entry: ScheduleEntry, board, moves: List[str]) -> Dict:
        return {
            "round": entry.round_number + 1,
            "white": self._name(entry.white_id),
            "black": self._name(entry.black_id),
            "size": entry.size,
            "komi": entry.komi,
            "opening": entry.opening,
            "tps": board.to_tps(),
            "moves": list(moves),
            "time_white": None,
            "time_black": None,
        }

    def live_games(self) -> List[Dict]:
        """Snapshot of games in progress"""
        with self.lock:
            return [dict(game, moves=list(game["moves"])) for _, game in sorted(self.live.items())]

    def live_game(self, round_number: int) -> Optional[Dict]:
        """Snapshot of one game in progress by 1-based round number"""
        with self.lock:
            game = self.live.get(round_number - 1)
            return dict(game, moves=list(game["moves"])) if game else None

    def get_standings(self) -> List[Dict]:
        return self.standings.get_standings()

    def get_results(self) -> Dict:
        """
        Get complete tournament results

        Returns:
            Dict with tournament info and results
        """
        duration = None
        if self.start_time and self.end_time:
            duration = (self.end_time - self.start_time).total_seconds()

        with self.lock:
            games = sorted(self.games, key=lambda g: g["round"])

        return {
            "tournament": self.name,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": duration,
            "engines": [e.name for e in self.engines],
            "games_played": len(games),
            "games_total": len(self.schedule),
            "stopped": self.stop_event.is_set(),
            "standings": self.get_standings(),
            "pairs": self.standings.pair_summaries(),
            "games": games
        }

    def save_results(self, filename: Optional[str] = None) -> str:
        """Save tournament results to JSON file"""
        if filename is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            filename = f"results/{self.name}_{timestamp}.json"

        Path(filename).parent.mkdir(parents=True, exist_ok=True)
        with open(filename, 'w') as f:
            json.dump(self.get_results(), f, indent=2)
        self.sink.info(f"Results saved to {filename}")
        return filename
