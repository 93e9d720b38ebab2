"""Core rules for XXXo: board, line scoring, turn transitions and end detection."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

Player = str  # "X" or "O"
Position = Tuple[int, int]  # (row, col), 0-indexed

BOARD_SIZE = 5
EMPTY = " "
PLAYERS: Tuple[Player, Player] = ("X", "O")
TIE = "tie"

# Horizontal, vertical, diagonal down-right, diagonal up-right
DIRECTIONS: Tuple[Tuple[int, int], ...] = ((0, 1), (1, 0), (1, 1), (-1, 1))

SHORT_LINE = 4  # worth 1 point
LONG_LINE = 5  # worth 2 points, or 1 when it extends a scored 4
# Above this many empty cells the board is considered open for scoring
OPEN_BOARD_EMPTY_CELLS = 12


def other(player: Player) -> Player:
    return "O" if player == "X" else "X"


def in_bounds(pos: Position) -> bool:
    row, col = pos
    return 0 <= row < BOARD_SIZE and 0 <= col < BOARD_SIZE


def is_adjacent(a: Position, b: Position) -> bool:
    """True when ``a`` is ``b`` itself or one of its 8 neighbours."""
    return abs(a[0] - b[0]) <= 1 and abs(a[1] - b[1]) <= 1


# ---------- Board ----------


@dataclass(frozen=True)
class Board:
    # Row-major; 'X', 'O', or ' ' (space) for empty
    cells: Tuple[str, ...] = (EMPTY,) * (BOARD_SIZE * BOARD_SIZE)

    def __getitem__(self, pos: Position) -> str:
        row, col = pos
        return self.cells[row * BOARD_SIZE + col]

    def is_empty(self, pos: Position) -> bool:
        return self[pos] == EMPTY

    def place(self, pos: Position, mark: Player) -> "Board":
        """Return a copy of the board with ``mark`` written at ``pos``."""
        assert self.is_empty(pos), f"Cell {pos} is already occupied"
        idx = pos[0] * BOARD_SIZE + pos[1]
        return Board(self.cells[:idx] + (mark,) + self.cells[idx + 1 :])

    def count_empty(self) -> int:
        return self.cells.count(EMPTY)

    def empty_cells(self) -> Iterator[Position]:
        for idx, cell in enumerate(self.cells):
            if cell == EMPTY:
                yield divmod(idx, BOARD_SIZE)

    def to_rows(self) -> List[List[str]]:
        """Rows as the client sees them: 'X', 'O' or '' for empty."""
        return [
            [
                c if c in PLAYERS else ""
                for c in self.cells[r * BOARD_SIZE : (r + 1) * BOARD_SIZE]
            ]
            for r in range(BOARD_SIZE)
        ]

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[Optional[str]]]) -> "Board":
        if len(rows) != BOARD_SIZE or any(len(r) != BOARD_SIZE for r in rows):
            raise ValueError(f"Board must be {BOARD_SIZE}x{BOARD_SIZE}")
        cells: List[str] = []
        for row in rows:
            for value in row:
                if value in PLAYERS:
                    cells.append(value)
                elif value in ("", EMPTY, None):
                    cells.append(EMPTY)
                else:
                    raise ValueError(f"Unknown cell value {value!r}")
        return cls(tuple(cells))


# ---------- Scoring ----------


def _count_from(board: Board, pos: Position, mark: Player, dr: int, dc: int) -> int:
    """Contiguous ``mark`` cells strictly beyond ``pos`` in one direction."""
    count = 0
    row, col = pos[0] + dr, pos[1] + dc
    while in_bounds((row, col)) and board[row, col] == mark:
        count += 1
        row += dr
        col += dc
    return count


def _line_points(run: int, prior_run: int) -> int:
    if run >= LONG_LINE:
        if prior_run < SHORT_LINE:
            return 2
        if prior_run == SHORT_LINE:
            return 1
        return 0
    if run == SHORT_LINE:
        return 1 if prior_run < SHORT_LINE else 0
    return 0


def score_move(board: Board, pos: Position, mark: Player) -> int:
    """Points earned by the placement of ``mark`` at ``pos``.

    ``board`` must already hold ``mark`` at ``pos``. Each of the four line
    directions is scored on its own, comparing the run through ``pos`` with
    the longest run that existed on that line before the placement, so a
    line that was already scored is never paid for twice.
    """
    assert board[pos] == mark, f"{mark} has not been placed at {pos}"
    total = 0
    for dr, dc in DIRECTIONS:
        forward = _count_from(board, pos, mark, dr, dc)
        backward = _count_from(board, pos, mark, -dr, -dc)
        total += _line_points(1 + forward + backward, max(forward, backward))
    return total


# ---------- Players' bookkeeping ----------


@dataclass(frozen=True)
class Score:
    x: int = 0
    o: int = 0

    def of(self, player: Player) -> int:
        return self.x if player == "X" else self.o

    def add(self, player: Player, points: int) -> "Score":
        if player == "X":
            return replace(self, x=self.x + points)
        return replace(self, o=self.o + points)


@dataclass(frozen=True)
class LastMoves:
    x: Optional[Position] = None
    o: Optional[Position] = None

    def of(self, player: Player) -> Optional[Position]:
        return self.x if player == "X" else self.o

    def with_move(self, player: Player, pos: Position) -> "LastMoves":
        if player == "X":
            return replace(self, x=pos)
        return replace(self, o=pos)


def decide_winner(score: Score) -> str:
    if score.x > score.o:
        return "X"
    if score.o > score.x:
        return "O"
    return TIE


# ---------- Terminal detection ----------


def legal_moves(board: Board, player: Player, last_moves: LastMoves) -> List[Position]:
    """Empty cells ``player`` may use given the adjacency restriction."""
    last = last_moves.of(player)
    return [
        pos
        for pos in board.empty_cells()
        if last is None or not is_adjacent(pos, last)
    ]


def has_legal_move(board: Board, player: Player, last_moves: LastMoves) -> bool:
    last = last_moves.of(player)
    return any(
        last is None or not is_adjacent(pos, last) for pos in board.empty_cells()
    )


def points_still_possible(board: Board, last_moves: LastMoves) -> bool:
    """One-move lookahead: can either player score with their next placement?

    An open board short-circuits to True. This is a stopping heuristic, not a
    proof that no points can ever be scored again.
    """
    if board.count_empty() > OPEN_BOARD_EMPTY_CELLS:
        return True
    for player in PLAYERS:
        for pos in legal_moves(board, player, last_moves):
            if score_move(board.place(pos, player), pos, player) > 0:
                return True
    return False


# ---------- Errors ----------


class MoveError(ValueError):
    """A move the rules reject; safe to report back to whoever submitted it."""

    reason = "invalid_move"


class GameOverError(MoveError):
    reason = "game_over"


class NotYourTurnError(MoveError):
    reason = "not_your_turn"


class CellOccupiedError(MoveError):
    reason = "cell_occupied"


class AdjacentMoveError(MoveError):
    reason = "adjacent_to_last_move"


class EndReason(str, Enum):
    BONUS_TURN_PLAYED = "bonus_turn_played"
    BOARD_FULL = "board_full"
    NO_MOVES = "no_moves"
    NO_POINTS_POSSIBLE = "no_points_possible"
    OPPONENT_BLOCKED = "opponent_blocked"


# ---------- Game state ----------


def _position_doc(pos: Optional[Position]) -> Optional[Dict[str, int]]:
    if pos is None:
        return None
    return {"row": pos[0], "col": pos[1]}


@dataclass(frozen=True)
class GameState:
    board: Board = field(default_factory=Board)
    current_player: Player = "X"
    score: Score = field(default_factory=Score)
    last_moves: LastMoves = field(default_factory=LastMoves)
    # Set only while O plays the extra turn granted because X is stuck
    bonus_turn: bool = False
    game_active: bool = True
    # None while active, else "X", "O" or "tie"
    winner: Optional[str] = None

    def legal_moves(self) -> List[Position]:
        """Legal moves for the player to move; empty once the game is over."""
        if not self.game_active:
            return []
        return legal_moves(self.board, self.current_player, self.last_moves)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "board": self.board.to_rows(),
            "currentPlayer": self.current_player,
            "gameActive": self.game_active,
            "score": {"X": self.score.x, "O": self.score.o},
            "lastMove": {p: _position_doc(self.last_moves.of(p)) for p in PLAYERS},
            "bonusTurn": self.bonus_turn,
            "winner": self.winner,
        }

    @classmethod
    def from_dict(cls, doc: Mapping[str, Any]) -> "GameState":
        """Rebuild a stored game, rejecting documents that break the rules."""
        board = Board.from_rows(doc["board"])

        current = doc.get("currentPlayer", "X")
        if current not in PLAYERS:
            raise ValueError(f"Unknown player {current!r}")

        raw_score = doc.get("score") or {}
        score = Score(x=int(raw_score.get("X", 0)), o=int(raw_score.get("O", 0)))
        if score.x < 0 or score.o < 0:
            raise ValueError("Scores cannot be negative")

        raw_last = doc.get("lastMove") or {}
        last_moves = LastMoves()
        for player in PLAYERS:
            raw = raw_last.get(player)
            if raw is None:
                continue
            pos = (int(raw["row"]), int(raw["col"]))
            if not in_bounds(pos):
                raise ValueError(f"Last move {pos} of {player} is off the board")
            if board[pos] != player:
                raise ValueError(f"Last move {pos} of {player} does not hold its mark")
            last_moves = last_moves.with_move(player, pos)

        active = bool(doc.get("gameActive", True))
        bonus = bool(doc.get("bonusTurn", False))
        if bonus and (current != "O" or not active):
            raise ValueError("A bonus turn can only be pending for O in a live game")

        winner = doc.get("winner")
        if active:
            if winner is not None:
                raise ValueError("An active game cannot have a winner")
        else:
            expected = decide_winner(score)
            if winner is not None and winner != expected:
                raise ValueError(f"Winner {winner!r} does not match the final score")
            winner = expected

        return cls(
            board=board,
            current_player=current,
            score=score,
            last_moves=last_moves,
            bonus_turn=bonus,
            game_active=active,
            winner=winner,
        )


@dataclass(frozen=True)
class MoveResult:
    state: GameState
    points: int
    end_reason: Optional[EndReason] = None

    @property
    def game_ended(self) -> bool:
        return not self.state.game_active

    @property
    def winner(self) -> Optional[str]:
        return self.state.winner


def _finish(state: GameState, points: int, reason: EndReason) -> MoveResult:
    final = replace(
        state,
        game_active=False,
        bonus_turn=False,
        winner=decide_winner(state.score),
    )
    return MoveResult(state=final, points=points, end_reason=reason)


def apply_move(state: GameState, pos: Position, mark: Player) -> MoveResult:
    """Validate and play ``mark`` at ``pos``, returning the next state.

    Raises a ``MoveError`` subclass when the move is rejected; ``state`` is
    never modified.
    """
    if not in_bounds(pos):
        raise ValueError(f"Position {pos} is off the board")
    if not state.game_active:
        raise GameOverError("Game already finished")
    if mark != state.current_player:
        raise NotYourTurnError("Not your turn")
    if not state.board.is_empty(pos):
        raise CellOccupiedError("Cell already occupied")
    last = state.last_moves.of(mark)
    if last is not None and is_adjacent(pos, last):
        raise AdjacentMoveError("Cannot move next to your last move")

    board = state.board.place(pos, mark)
    points = score_move(board, pos, mark)
    last_moves = state.last_moves.with_move(mark, pos)
    placed = replace(
        state,
        board=board,
        score=state.score.add(mark, points),
        last_moves=last_moves,
        bonus_turn=False,
    )

    # A bonus turn is always the last move of the game
    if state.bonus_turn and mark == "O":
        return _finish(placed, points, EndReason.BONUS_TURN_PLAYED)

    x_can_move = has_legal_move(board, "X", last_moves)
    o_can_move = has_legal_move(board, "O", last_moves)
    if board.count_empty() <= 1:
        return _finish(placed, points, EndReason.BOARD_FULL)
    if not x_can_move and not o_can_move:
        return _finish(placed, points, EndReason.NO_MOVES)
    if not points_still_possible(board, last_moves):
        return _finish(placed, points, EndReason.NO_POINTS_POSSIBLE)

    # X just moved and left itself stuck: O closes the game with a bonus turn.
    # After O's move a stuck X still gets the turn and has no legal cell.
    if mark == "X" and not x_can_move and o_can_move:
        return MoveResult(
            state=replace(placed, current_player="O", bonus_turn=True), points=points
        )
    # Only X's move is checked for a blocked opponent
    if mark == "X" and not o_can_move:
        return _finish(placed, points, EndReason.OPPONENT_BLOCKED)

    return MoveResult(state=replace(placed, current_player=other(mark)), points=points)
