"""
PTN Writer
Appends finished games to a PTN file in round order
"""

import logging
import threading
from pathlib import Path
from typing import Dict, Optional

from .match import MatchResult

logger = logging.getLogger(__name__)


class PtnWriter:
    """
    Thread-safe, ordered PTN output

    Games can finish out of order when several run at once; each game is
    held back until every earlier round has been written.
    """

    def __init__(self, filename: str, event: str = "takbench", site: str = "local"):
        """
        Args:
            filename: Output file, appended to
            event: PTN Event header
            site: PTN Site header
        """
        self.filename = Path(filename)
        self.filename.parent.mkdir(parents=True, exist_ok=True)
        self.event = event
        self.site = site
        self.next_round = 0
        self.pending: Dict[int, Optional[MatchResult]] = {}
        self.written = 0
        self.lock = threading.Lock()

    def add_game(self, result: MatchResult):
        with self.lock:
            self.pending[result.round_number] = result
            self._flush_ready()

    def skip_round(self, round_number: int):
        """Mark a round that will never be played so later games are not held back"""
        with self.lock:
            self.pending[round_number] = None
            self._flush_ready()

    def _flush_ready(self):
        with open(self.filename, "a", encoding="utf-8") as f:
            while self.next_round in self.pending:
                result = self.pending.pop(self.next_round)
                if result is not None:
                    f.write(result.to_ptn(self.event, self.site))
                    f.write("\n")
                    self.written += 1
                self.next_round += 1

    def close(self):
        """Write whatever is still held back, in round order"""
        with self.lock:
            with open(self.filename, "a", encoding="utf-8") as f:
                for round_number in sorted(self.pending):
                    result = self.pending[round_number]
                    if result is not None:
                        f.write(result.to_ptn(self.event, self.site))
                        f.write("\n")
                        self.written += 1
            self.pending.clear()
        logger.info(f"Wrote {self.written} games to {self.filename}")
