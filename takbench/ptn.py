"""
Portable Tak Notation
Square names, move text and TPS position strings
"""

import re
from typing import List, Sequence, Tuple

from .board import Direction, Move, Piece, Place, Shape, Spread
from .results import Color

FILES = "abcdefgh"

_MOVE_RE = re.compile(
    r"^(?P<count>[1-8])?(?P<shape>[FSC])?(?P<square>[a-h][1-8])"
    r"(?:(?P<direction>[+\-<>])(?P<drops>[1-8]*)(?P<crush>\*)?)?$"
)


class PtnError(ValueError):
    """Malformed move or position text"""


def parse_square(text: str, size: int) -> int:
    if len(text) != 2 or text[0] not in FILES or not text[1].isdigit():
        raise PtnError(f"Invalid square: {text!r}")
    col = FILES.index(text[0])
    row = int(text[1]) - 1
    if not (0 <= col < size and 0 <= row < size):
        raise PtnError(f"Square {text} is off a {size}x{size} board")
    return row * size + col


def square_name(square: int, size: int) -> str:
    row, col = divmod(square, size)
    return f"{FILES[col]}{row + 1}"


def parse_move(text: str, size: int) -> Move:
    """
    Decode a PTN move

    Args:
        text: Move such as "c3", "Sa1", "3b2>12*"
        size: Board size, used to range-check the square

    Returns:
        Place or Spread
    """
    stripped = text.strip().rstrip("'\"!?")
    match = _MOVE_RE.match(stripped)
    if not match:
        raise PtnError(f"Invalid move: {text!r}")

    square = parse_square(match.group("square"), size)
    direction = match.group("direction")

    if direction is None:
        if match.group("count"):
            raise PtnError(f"Placement cannot carry a count: {text!r}")
        return Place(square, Shape(match.group("shape") or "F"))

    if match.group("shape"):
        raise PtnError(f"Spread cannot name a piece shape: {text!r}")
    count = int(match.group("count") or 1)
    drops_text = match.group("drops")
    drops = tuple(int(d) for d in drops_text) if drops_text else (count,)
    if sum(drops) != count:
        raise PtnError(f"Drops {drops_text} do not add up to {count}: {text!r}")
    return Spread(square, Direction(direction), drops, bool(match.group("crush")))


def move_to_ptn(move: Move, size: int) -> str:
    """Canonical PTN: no F prefix, count 1 and single drops omitted"""
    square = square_name(move.square, size)
    if isinstance(move, Place):
        prefix = "" if move.shape is Shape.FLAT else move.shape.value
        return prefix + square

    count = str(move.count) if move.count > 1 else ""
    drops = "".join(str(d) for d in move.drops) if len(move.drops) > 1 else ""
    crush = "*" if move.crush else ""
    return f"{count}{square}{move.direction.value}{drops}{crush}"


def parse_tps(tps: str) -> Tuple[int, List[List[Piece]], Color, int]:
    """
    Parse a TPS string

    Returns:
        (size, stacks indexed by square, side to move, full-move number)
    """
    parts = tps.strip().split()
    if len(parts) != 3:
        raise PtnError(f"TPS needs rows, side to move and move number: {tps!r}")
    rows_text, side_text, move_text = parts

    if side_text not in ("1", "2"):
        raise PtnError(f"Invalid side to move {side_text!r} in TPS")
    if not move_text.isdigit() or int(move_text) < 1:
        raise PtnError(f"Invalid move number {move_text!r} in TPS")

    rows = rows_text.split("/")
    size = len(rows)
    if not 3 <= size <= 8:
        raise PtnError(f"Unsupported TPS board size {size}")

    stacks: List[List[Piece]] = [[] for _ in range(size * size)]
    for index, row_text in enumerate(rows):
        row = size - 1 - index
        col = 0
        for cell in row_text.split(","):
            if cell.startswith("x"):
                run = int(cell[1:]) if len(cell) > 1 else 1
                col += run
                continue
            stack = _parse_stack(cell, tps)
            if col >= size:
                raise PtnError(f"Row {row + 1} is too long in TPS {tps!r}")
            stacks[row * size + col] = stack
            col += 1
        if col != size:
            raise PtnError(f"Row {row + 1} has {col} cells, expected {size}: {tps!r}")

    color = Color.WHITE if side_text == "1" else Color.BLACK
    return size, stacks, color, int(move_text)


def _parse_stack(cell: str, tps: str) -> List[Piece]:
    shape = Shape.FLAT
    if cell and cell[-1] in "SC":
        shape = Shape(cell[-1])
        cell = cell[:-1]
    if not cell or any(ch not in "12" for ch in cell):
        raise PtnError(f"Invalid stack {cell!r} in TPS {tps!r}")
    pieces = [Piece(Color.WHITE if ch == "1" else Color.BLACK, Shape.FLAT) for ch in cell]
    pieces[-1] = Piece(pieces[-1].color, shape)
    return pieces


def format_tps(size: int, stacks: Sequence[Sequence[Piece]], to_move: Color, move_number: int) -> str:
    rows = []
    for row in range(size - 1, -1, -1):
        cells: List[str] = []
        empty = 0
        for col in range(size):
            stack = stacks[row * size + col]
            if not stack:
                empty += 1
                continue
            if empty:
                cells.append("x" if empty == 1 else f"x{empty}")
                empty = 0
            text = "".join(str(p.color.ptn_number) for p in stack)
            if stack[-1].shape is not Shape.FLAT:
                text += stack[-1].shape.value
            cells.append(text)
        if empty:
            cells.append("x" if empty == 1 else f"x{empty}")
        rows.append(",".join(cells))
    return f"{'/'.join(rows)} {to_move.ptn_number} {move_number}"


def start_tps(size: int) -> str:
    """TPS of the empty board"""
    return format_tps(size, [[] for _ in range(size * size)], Color.WHITE, 1)
