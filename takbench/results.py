"""
Game Results
Colours, termination reasons and the closed set of game outcomes
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class Color(Enum):
    """Player colour"""
    WHITE = "white"
    BLACK = "black"

    def other(self) -> "Color":
        return Color.BLACK if self is Color.WHITE else Color.WHITE

    @property
    def ptn_number(self) -> int:
        """Player number as written in TPS (1 or 2)"""
        return 1 if self is Color.WHITE else 2


class Reason(Enum):
    """Why a game ended"""
    ROAD = "road"
    FLATS = "flats"
    RESIGNATION = "resignation"
    ILLEGAL_MOVE = "illegal move"
    TIMEOUT = "timeout"
    CRASH = "crash"
    PROTOCOL_ERROR = "protocol error"
    FORFEIT = "forfeit"
    REPETITION = "repetition"
    MOVE_LIMIT = "move limit"


@dataclass(frozen=True)
class Win:
    color: Color
    reason: Reason

    @property
    def loser(self) -> Color:
        return self.color.other()


@dataclass(frozen=True)
class Draw:
    reason: Reason


@dataclass(frozen=True)
class Unterminated:
    pass


GameResult = Union[Win, Draw, Unterminated]


def is_terminal(result: GameResult) -> bool:
    return not isinstance(result, Unterminated)


def result_token(result: GameResult) -> str:
    """
    PTN result token for a game result

    Road and flat wins get their own letters (R-0, 0-F, ...), every other
    decisive result is written as 1-0 / 0-1.
    """
    if isinstance(result, Win):
        if result.reason is Reason.ROAD:
            letter = "R"
        elif result.reason is Reason.FLATS:
            letter = "F"
        else:
            letter = "1"
        return f"{letter}-0" if result.color is Color.WHITE else f"0-{letter}"
    if isinstance(result, Draw):
        return "1/2-1/2"
    return "*"


def score_for(result: GameResult, color: Color) -> float:
    """Points earned by `color`: win=1, draw=0.5, loss=0"""
    if isinstance(result, Win):
        return 1.0 if result.color is color else 0.0
    if isinstance(result, Draw):
        return 0.5
    raise ValueError("Unterminated game has no score")


def describe(result: GameResult) -> str:
    """Human readable termination, e.g. 'White wins by road'"""
    if isinstance(result, Win):
        return f"{result.color.value.capitalize()} wins by {result.reason.value}"
    if isinstance(result, Draw):
        return f"Draw by {result.reason.value}"
    return "Unterminated"
