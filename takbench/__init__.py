"""
Tak Engine Testing Framework
Referee and tournament runner for TEI engines
"""

__version__ = "1.0.0"
__author__ = "takbench Contributors"

from .board import Board, IllegalMove, Place, Spread, Shape, Direction
from .results import Color, Reason, Win, Draw, Unterminated
from .tei_interface import TEIEngine, EngineState
from .engine_manager import EngineManager, EngineConfig
from .match import Match, MatchResult
from .schedule import ScheduleEntry, TimeControl, TournamentFormat, ConfigurationError, build_schedule
from .tournament import Tournament, TournamentStats, Standings
from .opening_book import OpeningSuite
from .ptn_writer import PtnWriter

__all__ = [
    'Board',
    'IllegalMove',
    'Place',
    'Spread',
    'Shape',
    'Direction',
    'Color',
    'Reason',
    'Win',
    'Draw',
    'Unterminated',
    'TEIEngine',
    'EngineState',
    'EngineManager',
    'EngineConfig',
    'Match',
    'MatchResult',
    'ScheduleEntry',
    'TimeControl',
    'TournamentFormat',
    'ConfigurationError',
    'build_schedule',
    'Tournament',
    'TournamentStats',
    'Standings',
    'OpeningSuite',
    'PtnWriter'
]
