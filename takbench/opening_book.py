"""
Opening Book Manager
Loads opening suites as TPS positions or move lists from the start position
"""

import logging
import random
import re
from pathlib import Path
from typing import Dict, List, Optional

from .board import Board, IllegalMove
from .ptn import PtnError, parse_move, parse_tps
from .schedule import ConfigurationError

logger = logging.getLogger(__name__)

BOOK_FORMATS = ("auto", "tps", "moves")

_MOVE_NUMBER = re.compile(r"^\d+\.$")


class OpeningSuite:
    """
    Opening suite manager

    Manages collections of opening positions for tournaments. Every opening
    is stored as a TPS string for one board size.
    """

    def __init__(self, size: int):
        self.size = size
        self.openings: List[Dict] = []

    def load_from_file(self, path: str, book_format: str = "auto"):
        """
        Load openings, one per line

        Args:
            path: Text file; blank lines and '#' comments are ignored
            book_format: "tps", "moves" or "auto" (TPS if the line contains '/')
        """
        if book_format not in BOOK_FORMATS:
            raise ConfigurationError(f"Unknown book format {book_format!r}")

        book_path = Path(path)
        if not book_path.exists():
            raise ConfigurationError(f"Opening book not found: {path}")

        with open(book_path, encoding="utf-8") as f:
            for number, line in enumerate(f, 1):
                line = line.strip()
                if not line or line.startswith('#'):
                    continue
                name = f"{book_path.name}:{number}"
                is_tps = book_format == "tps" or (book_format == "auto" and "/" in line)
                if is_tps:
                    self.add_position(name, line)
                else:
                    self.add_opening(name, line.split())

        logger.info(f"Loaded {len(self.openings)} openings from {path}")

    def add_position(self, name: str, tps: str):
        """Add an opening given as TPS"""
        try:
            size = parse_tps(tps)[0]
            Board.from_tps(tps)
        except ValueError as e:
            raise ConfigurationError(f"Invalid opening {name}: {e}")
        if size != self.size:
            raise ConfigurationError(f"Opening {name} is {size}x{size}, expected {self.size}x{self.size}")
        self.openings.append({"name": name, "tps": tps})

    def add_opening(self, name: str, moves: List[str]):
        """
        Add opening as a move list played from the empty board

        Args:
            name: Opening name
            moves: PTN moves; move numbers such as "1." are skipped
        """
        try:
            board = Board(self.size)
        except ValueError as e:
            raise ConfigurationError(f"Invalid opening {name}: {e}")
        played = []
        for text in moves:
            if _MOVE_NUMBER.match(text):
                continue
            try:
                board.apply(parse_move(text, self.size))
            except (PtnError, IllegalMove) as e:
                raise ConfigurationError(f"Invalid move {text!r} in opening {name}: {e}")
            played.append(text)
        self.openings.append({"name": name, "tps": board.to_tps(), "moves": played})

    def shuffle(self, seed: Optional[int] = None):
        random.Random(seed).shuffle(self.openings)

    def positions(self) -> List[str]:
        """All openings as TPS, in suite order"""
        return [opening["tps"] for opening in self.openings]

    def __len__(self) -> int:
        return len(self.openings)
