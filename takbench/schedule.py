"""
Tournament Scheduler
Expands a tournament format, engine count and opening list into an
ordered, immutable list of game assignments
"""

from dataclasses import dataclass
from enum import Enum
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

from .board import RESERVES


class ConfigurationError(ValueError):
    """Invalid tournament setup; nothing can be played"""


@dataclass(frozen=True)
class TimeControl:
    """Base time and increment, both in milliseconds"""
    base_ms: int
    increment_ms: int = 0

    @classmethod
    def parse(cls, text: str) -> "TimeControl":
        """Parse `base[+increment]` in seconds, e.g. "60+0.6" """
        base, _, increment = text.strip().partition("+")
        try:
            base_ms = round(float(base) * 1000)
            increment_ms = round(float(increment) * 1000) if increment else 0
        except (ValueError, OverflowError):
            raise ConfigurationError(f"Invalid time control: {text!r}")
        if base_ms <= 0 or increment_ms < 0:
            raise ConfigurationError(f"Invalid time control: {text!r}")
        return cls(base_ms, increment_ms)

    def __str__(self) -> str:
        return f"{self.base_ms / 1000:g}+{self.increment_ms / 1000:g}"


class TournamentFormat(Enum):
    ROUND_ROBIN = "round-robin"
    BOOK_TEST = "book-test"
    GAUNTLET = "gauntlet"

    @classmethod
    def from_name(cls, name: str) -> "TournamentFormat":
        normalized = name.strip().lower().replace("_", "-")
        for fmt in cls:
            if fmt.value == normalized or fmt.value.replace("-", "") == normalized:
                return fmt
        raise ConfigurationError(f"Unknown tournament format: {name!r}")


@dataclass(frozen=True)
class ScheduleEntry:
    """One game assignment; engine ids index the engine list"""
    round_number: int
    white_id: int
    black_id: int
    opening: Optional[str]
    size: int
    komi: float
    time_control: TimeControl

    def involves(self, engine_id: int) -> bool:
        return engine_id in (self.white_id, self.black_id)


def pairings(num_engines: int, fmt: TournamentFormat) -> List[Tuple[int, int]]:
    """
    (white, black) pairs played on each opening

    Raises:
        ConfigurationError: too few engines for the format
    """
    if num_engines < 1:
        raise ConfigurationError("No engines configured")

    if fmt is TournamentFormat.GAUNTLET:
        if num_engines < 3:
            raise ConfigurationError(f"Gauntlet needs at least 3 engines, got {num_engines}")
        challengers = range(1, num_engines)
        return [(0, c) for c in challengers] + [(c, 0) for c in challengers]

    if fmt is TournamentFormat.ROUND_ROBIN and num_engines < 2:
        raise ConfigurationError(f"Round robin needs at least 2 engines, got {num_engines}")

    block = []
    for a, b in combinations(range(num_engines), 2):
        block.append((a, b))
        block.append((b, a))
    if fmt is TournamentFormat.BOOK_TEST:
        for engine_id in range(num_engines):
            block.append((engine_id, engine_id))
            block.append((engine_id, engine_id))
    return block


def build_schedule(num_engines: int,
                   openings: Sequence[Optional[str]],
                   fmt: TournamentFormat,
                   size: int,
                   komi: float,
                   time_control: TimeControl,
                   num_games: Optional[int] = None,
                   book_start: int = 0) -> Tuple[ScheduleEntry, ...]:
    """
    Generate the full schedule

    Args:
        num_engines: Number of engines; ids are 0..num_engines-1
        openings: TPS strings (None for the empty board); empty means start position
        fmt: Tournament format
        size: Board size
        komi: Flat bonus for Black
        time_control: Default time control
        num_games: Games to play (default: every pairing on every opening)
        book_start: Index of the first opening used

    Returns:
        Tuple of entries in round order
    """
    if size not in RESERVES:
        raise ConfigurationError(f"Unsupported board size: {size}")
    if komi * 2 != int(komi * 2):
        raise ConfigurationError(f"Komi must be a multiple of 0.5, got {komi}")

    block = pairings(num_engines, fmt)
    openings = list(openings) or [None]
    if num_games is None:
        num_games = len(block) * len(openings)
    if num_games < 1:
        raise ConfigurationError(f"Number of games must be positive, got {num_games}")

    entries = []
    for round_number in range(num_games):
        white_id, black_id = block[round_number % len(block)]
        opening = openings[(book_start + round_number // len(block)) % len(openings)]
        entries.append(ScheduleEntry(round_number, white_id, black_id, opening,
                                     size, komi, time_control))
    return tuple(entries)
