"""
Tak Board Model
Rules of the game: pieces, moves, legality, terminal detection and
position fingerprints for repetition tracking
"""

from collections import Counter, deque
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Hashable, List, Optional, Tuple, Union

from .results import Color, Draw, GameResult, Reason, Unterminated, Win, is_terminal

# (stones, capstones) per colour for each board size
RESERVES: Dict[int, Tuple[int, int]] = {
    3: (10, 0),
    4: (15, 0),
    5: (21, 1),
    6: (30, 1),
    7: (40, 2),
    8: (50, 2),
}

DEFAULT_MAX_MOVES = 100


class IllegalMove(ValueError):
    """Raised when a move does not satisfy the rules in the current position"""


class Shape(Enum):
    FLAT = "F"
    WALL = "S"
    CAP = "C"


class Direction(Enum):
    UP = "+"
    DOWN = "-"
    LEFT = "<"
    RIGHT = ">"

    @property
    def delta(self) -> Tuple[int, int]:
        """(row, column) step; row 0 is rank 1"""
        return {
            Direction.UP: (1, 0),
            Direction.DOWN: (-1, 0),
            Direction.LEFT: (0, -1),
            Direction.RIGHT: (0, 1),
        }[self]


@dataclass(frozen=True)
class Piece:
    color: Color
    shape: Shape

    @property
    def is_road(self) -> bool:
        return self.shape is not Shape.WALL


@dataclass(frozen=True)
class Place:
    """Place a piece from reserve; its colour is whatever the rules give the mover"""
    square: int
    shape: Shape = Shape.FLAT


@dataclass(frozen=True)
class Spread:
    """
    Pick up pieces from a stack and drop them along one direction

    `drops` lists how many pieces are left on each successive square;
    `crush` marks a lone capstone flattening a wall on the last drop.
    """
    square: int
    direction: Direction
    drops: Tuple[int, ...]
    crush: bool = False

    @property
    def count(self) -> int:
        return sum(self.drops)


Move = Union[Place, Spread]


class Board:
    """
    Tak position with full rules enforcement

    Features:
    - Board sizes 3 to 8 with per-size reserves
    - Opening swap rule (first two plies place the opponent's flat)
    - Spreads with carry limit, wall/capstone blocking and crushing
    - Road, flat-count, repetition and move-limit adjudication
    - Hashable fingerprints folded into a repetition counter
    """

    def __init__(self, size: int, komi: float = 0.0, max_moves: int = DEFAULT_MAX_MOVES):
        """
        Create an empty board with White to move

        Args:
            size: Board size (3-8)
            komi: Flat-count bonus for Black, in half points
            max_moves: Full moves before the game is drawn
        """
        if size not in RESERVES:
            raise ValueError(f"Unsupported board size: {size}")
        if komi * 2 != int(komi * 2):
            raise ValueError(f"Komi must be a multiple of 0.5, got {komi}")

        self.size = size
        self.komi = komi
        self.max_moves = max_moves
        self.stacks: List[List[Piece]] = [[] for _ in range(size * size)]
        self.to_move = Color.WHITE
        self.ply = 0

        stones, caps = RESERVES[size]
        self.stones = {Color.WHITE: stones, Color.BLACK: stones}
        self.caps = {Color.WHITE: caps, Color.BLACK: caps}

        self.history: Counter = Counter()
        self.history[self.fingerprint()] += 1
        self._status: GameResult = Unterminated()

    @classmethod
    def from_tps(cls, tps: str, komi: float = 0.0, max_moves: int = DEFAULT_MAX_MOVES) -> "Board":
        """Build a board from a TPS string; reserves are derived from the stacks"""
        from .ptn import parse_tps

        size, stacks, to_move, move_number = parse_tps(tps)
        board = cls(size, komi, max_moves)
        board.stacks = [list(stack) for stack in stacks]
        board.to_move = to_move
        board.ply = (move_number - 1) * 2 + (0 if to_move is Color.WHITE else 1)

        for color in Color:
            pieces = [p for stack in board.stacks for p in stack if p.color is color]
            board.stones[color] -= sum(1 for p in pieces if p.shape is not Shape.CAP)
            board.caps[color] -= sum(1 for p in pieces if p.shape is Shape.CAP)
            if board.stones[color] < 0 or board.caps[color] < 0:
                raise ValueError(f"Too many {color.value} pieces for size {size}: {tps}")

        board.history = Counter()
        board.history[board.fingerprint()] += 1
        board._status = board._adjudicate(board.to_move.other())
        return board

    def to_tps(self) -> str:
        from .ptn import format_tps

        return format_tps(self.size, self.stacks, self.to_move, self.move_number)

    @property
    def move_number(self) -> int:
        """Full-move number, starting at 1"""
        return self.ply // 2 + 1

    def copy(self) -> "Board":
        other = Board.__new__(Board)
        other.size = self.size
        other.komi = self.komi
        other.max_moves = self.max_moves
        other.stacks = [list(stack) for stack in self.stacks]
        other.to_move = self.to_move
        other.ply = self.ply
        other.stones = dict(self.stones)
        other.caps = dict(self.caps)
        other.history = Counter(self.history)
        other._status = self._status
        return other

    def __eq__(self, other) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return (self.size == other.size
                and self.stacks == other.stacks
                and self.to_move == other.to_move
                and self.ply == other.ply
                and self.komi == other.komi)

    def __repr__(self) -> str:
        return f"Board({self.to_tps()!r}, komi={self.komi})"

    # Position queries

    def top(self, square: int) -> Optional[Piece]:
        stack = self.stacks[square]
        return stack[-1] if stack else None

    def fingerprint(self) -> Hashable:
        """Canonical key of (stacks, side to move) used for repetition detection"""
        return (self.size, tuple(tuple(stack) for stack in self.stacks), self.to_move)

    def repetitions(self) -> int:
        """How many times the current position has occurred"""
        return self.history[self.fingerprint()]

    def count_flats(self, color: Color) -> int:
        return sum(1 for stack in self.stacks
                   if stack and stack[-1].color is color and stack[-1].shape is Shape.FLAT)

    def reserves_left(self, color: Color) -> int:
        return self.stones[color] + self.caps[color]

    def is_full(self) -> bool:
        return all(self.stacks)

    def has_road(self, color: Color) -> bool:
        """Connected road-piece group of `color` touching two opposite edges"""
        n = self.size

        def controlled(square: int) -> bool:
            piece = self.top(square)
            return piece is not None and piece.color is color and piece.is_road

        # (start edge, reached-far-edge test) for both axes
        axes = [
            ([c for c in range(n)], lambda sq: sq // n == n - 1),
            ([r * n for r in range(n)], lambda sq: sq % n == n - 1),
        ]
        for start_edge, at_far_edge in axes:
            seen = set()
            queue = deque(sq for sq in start_edge if controlled(sq))
            seen.update(queue)
            while queue:
                square = queue.popleft()
                if at_far_edge(square):
                    return True
                for neighbour in self._neighbours(square):
                    if neighbour not in seen and controlled(neighbour):
                        seen.add(neighbour)
                        queue.append(neighbour)
        return False

    def _neighbours(self, square: int) -> List[int]:
        n = self.size
        row, col = divmod(square, n)
        result = []
        for drow, dcol in (d.delta for d in Direction):
            r, c = row + drow, col + dcol
            if 0 <= r < n and 0 <= c < n:
                result.append(r * n + c)
        return result

    # Rules

    def terminal_status(self) -> GameResult:
        return self._status

    def legal(self, move: Move) -> bool:
        """True if `apply(move)` would succeed; never mutates"""
        try:
            self._validate(move)
        except IllegalMove:
            return False
        return True

    def apply(self, move: Move) -> GameResult:
        """
        Play a move for the side to move

        Args:
            move: Fully parsed Place or Spread

        Returns:
            The game status after the move

        Raises:
            IllegalMove: if the move breaks any rule in this position
        """
        self._validate(move)
        mover = self.to_move

        if isinstance(move, Place):
            color = self._placement_color()
            if move.shape is Shape.CAP:
                self.caps[color] -= 1
            else:
                self.stones[color] -= 1
            self.stacks[move.square].append(Piece(color, move.shape))
        else:
            origin = self.stacks[move.square]
            carried = origin[-move.count:]
            del origin[-move.count:]
            for square, drop in zip(self._spread_path(move), move.drops):
                target = self.stacks[square]
                if target and target[-1].shape is Shape.WALL:
                    target[-1] = Piece(target[-1].color, Shape.FLAT)
                target.extend(carried[:drop])
                carried = carried[drop:]

        self.ply += 1
        self.to_move = mover.other()
        self.history[self.fingerprint()] += 1
        self._status = self._adjudicate(mover)
        return self._status

    def _adjudicate(self, mover: Color) -> GameResult:
        white_road = self.has_road(Color.WHITE)
        black_road = self.has_road(Color.BLACK)
        if white_road and black_road:
            return Win(mover, Reason.ROAD)
        if white_road:
            return Win(Color.WHITE, Reason.ROAD)
        if black_road:
            return Win(Color.BLACK, Reason.ROAD)

        if self.is_full() or any(self.reserves_left(c) == 0 for c in Color):
            white = self.count_flats(Color.WHITE)
            black = self.count_flats(Color.BLACK) + self.komi
            if white > black:
                return Win(Color.WHITE, Reason.FLATS)
            if black > white:
                return Win(Color.BLACK, Reason.FLATS)
            return Draw(Reason.FLATS)

        if self.repetitions() >= 3:
            return Draw(Reason.REPETITION)

        if self.ply >= 2 * self.max_moves:
            return Draw(Reason.MOVE_LIMIT)

        return Unterminated()

    def _placement_color(self) -> Color:
        # Each side's first placement is a flat of the opponent's colour
        return self.to_move.other() if self.ply < 2 else self.to_move

    def _validate(self, move: Move):
        if is_terminal(self._status):
            raise IllegalMove("Game is already over")
        if not 0 <= move.square < self.size * self.size:
            raise IllegalMove(f"Square {move.square} is off the board")
        if isinstance(move, Place):
            self._validate_place(move)
        else:
            self._check_spread(move)

    def _validate_place(self, move: Place):
        color = self._placement_color()
        if self.stacks[move.square]:
            raise IllegalMove("Square is occupied")
        if self.ply < 2 and move.shape is not Shape.FLAT:
            raise IllegalMove("Only flats may be placed on the first turn")
        if move.shape is Shape.CAP:
            if self.caps[color] == 0:
                raise IllegalMove("No capstones left")
        elif self.stones[color] == 0:
            raise IllegalMove("No stones left")

    def _spread_path(self, move: Spread) -> List[int]:
        n = self.size
        row, col = divmod(move.square, n)
        drow, dcol = move.direction.delta
        path = []
        for step in range(1, len(move.drops) + 1):
            r, c = row + drow * step, col + dcol * step
            if not (0 <= r < n and 0 <= c < n):
                raise IllegalMove("Spread runs off the board")
            path.append(r * n + c)
        return path

    def _check_spread(self, move: Spread) -> bool:
        """Validate a spread; returns whether its last drop flattens a wall"""
        if self.ply < 2:
            raise IllegalMove("Stacks cannot be moved on the first turn")
        if not move.drops or any(d < 1 for d in move.drops):
            raise IllegalMove("Every drop must leave at least one piece")
        stack = self.stacks[move.square]
        if not stack or stack[-1].color is not self.to_move:
            raise IllegalMove("Origin stack is not controlled by the side to move")
        if move.count > self.size:
            raise IllegalMove(f"Cannot carry more than {self.size} pieces")
        if move.count > len(stack):
            raise IllegalMove("Cannot carry more pieces than the stack holds")

        mover_top = stack[-1]
        crushes = False
        path = self._spread_path(move)
        for index, square in enumerate(path):
            top = self.top(square)
            if top is None or top.shape is Shape.FLAT:
                continue
            if top.shape is Shape.CAP:
                raise IllegalMove("Cannot spread onto a capstone")
            last = index == len(path) - 1
            if last and move.drops[-1] == 1 and mover_top.shape is Shape.CAP:
                crushes = True
            else:
                raise IllegalMove("Cannot spread onto a wall")

        if move.crush and not crushes:
            raise IllegalMove("Crush marker on a spread that flattens nothing")
        return crushes

    def legal_moves(self) -> List[Move]:
        """Every legal move in the position, crushes marked"""
        if is_terminal(self._status):
            return []

        moves: List[Move] = []
        color = self._placement_color()
        shapes = [Shape.FLAT]
        if self.ply >= 2:
            if self.stones[color]:
                shapes.append(Shape.WALL)
            if self.caps[color]:
                shapes.append(Shape.CAP)
        if not self.stones[color]:
            shapes.remove(Shape.FLAT)
        for square, stack in enumerate(self.stacks):
            if not stack:
                moves.extend(Place(square, shape) for shape in shapes)

        if self.ply < 2:
            return moves

        for square, stack in enumerate(self.stacks):
            if not stack or stack[-1].color is not self.to_move:
                continue
            for direction in Direction:
                for count in range(1, min(self.size, len(stack)) + 1):
                    for drops in _partitions(count):
                        candidate = Spread(square, direction, drops)
                        try:
                            crushes = self._check_spread(candidate)
                        except IllegalMove:
                            continue
                        moves.append(Spread(square, direction, drops, crushes))
        return moves


def _partitions(total: int) -> List[Tuple[int, ...]]:
    """Ordered compositions of `total` into positive parts"""
    if total == 0:
        return [()]
    result = []
    for first in range(1, total + 1):
        for rest in _partitions(total - first):
            result.append((first,) + rest)
    return result
