"""Computer opponent for XXXo: random, greedy and alpha-beta difficulty tiers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union
import math
import random

from .game import (
    BOARD_SIZE,
    DIRECTIONS,
    LONG_LINE,
    Board,
    GameState,
    Player,
    Position,
    apply_move,
    in_bounds,
    legal_moves,
    other,
    score_move,
)


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


WIN_SCORE = 99_999.0
POINT_WEIGHT = 120
REPLY_POINT_WEIGHT = 110
MOBILITY_WEIGHT = 2
CENTER_WEIGHT = 2.0
CENTER = BOARD_SIZE // 2


def _five_cell_windows() -> Tuple[Tuple[Position, ...], ...]:
    windows: List[Tuple[Position, ...]] = []
    for row in range(BOARD_SIZE):
        for col in range(BOARD_SIZE):
            for dr, dc in DIRECTIONS:
                end = (row + dr * (LONG_LINE - 1), col + dc * (LONG_LINE - 1))
                if in_bounds(end):
                    windows.append(
                        tuple((row + dr * i, col + dc * i) for i in range(LONG_LINE))
                    )
    return tuple(windows)


# Every full-length line on the board: 5 rows, 5 columns, 2 diagonals
WINDOWS: Tuple[Tuple[Position, ...], ...] = _five_cell_windows()


def positional_evaluation(board: Board, mark: Player) -> int:
    """Reward open lines for ``mark`` and penalise lines left to the opponent."""
    opp = other(mark)
    value = 0
    for window in WINDOWS:
        marks = [board[pos] for pos in window]
        own = marks.count(mark)
        theirs = marks.count(opp)
        if theirs == 0:
            value += own * own
        elif own == 0:
            value -= theirs * theirs
    return value


def _points_for(board: Board, pos: Position, mark: Player) -> int:
    return score_move(board.place(pos, mark), pos, mark)


@dataclass
class MoveSelector:
    """AI player choosing moves for one mark at a fixed difficulty.

    ``jitter`` bounds the random noise added to rankings (medium) and leaf
    evaluations (hard); set it to 0 for fully reproducible play. ``rng`` is
    the only source of randomness used.
    """

    player: Player = "O"
    difficulty: Union[Difficulty, str] = Difficulty.MEDIUM
    depth: int = 2
    jitter: float = 3.0
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def __post_init__(self) -> None:
        self.difficulty = Difficulty(self.difficulty)

    # ---- public API ----

    def choose(self, state: GameState) -> Position:
        if state.current_player != self.player:
            raise ValueError("It is not this AI player's turn")
        moves = state.legal_moves()
        if not moves:
            raise RuntimeError("No valid moves available")

        if self.difficulty is Difficulty.EASY:
            return self._choose_easy(state, moves)
        if self.difficulty is Difficulty.MEDIUM:
            return self._choose_medium(state, moves)
        return self._choose_hard(state, moves)

    # ---- tiers ----

    def _choose_easy(self, state: GameState, moves: List[Position]) -> Position:
        scoring = [m for m in moves if _points_for(state.board, m, self.player) > 0]
        return self.rng.choice(scoring or moves)

    def _choose_medium(self, state: GameState, moves: List[Position]) -> Position:
        me: Player = self.player
        opp: Player = other(me)
        best_move = moves[0]
        best_rank = -math.inf
        for move in moves:
            board = state.board.place(move, me)
            gain = score_move(board, move, me)
            replies = legal_moves(board, opp, state.last_moves.with_move(me, move))
            opp_best = max((_points_for(board, r, opp) for r in replies), default=0)
            rank = (
                gain * POINT_WEIGHT
                - opp_best * REPLY_POINT_WEIGHT
                + positional_evaluation(board, me)
                + self._center_bias(move)
                + self._noise()
            )
            if rank > best_rank:
                best_rank, best_move = rank, move
        return best_move

    def _choose_hard(self, state: GameState, moves: List[Position]) -> Position:
        alpha, beta = -math.inf, math.inf
        value = -math.inf
        best_move: Optional[Position] = None
        for move in self._ordered(state, moves):
            child = apply_move(state, move, self.player).state
            score = self._minimax(child, self.depth - 1, alpha, beta)
            if score > value:
                value, best_move = score, move
            alpha = max(alpha, value)
        return best_move if best_move is not None else moves[0]

    # ---- core search ----

    def _minimax(self, state: GameState, depth: int, alpha: float, beta: float) -> float:
        if not state.game_active:
            return self._terminal_value(state)
        moves = state.legal_moves()
        if depth <= 0 or not moves:
            return self._evaluate(state)

        mover = state.current_player
        maximizing = mover == self.player
        value = -math.inf if maximizing else math.inf
        for move in self._ordered(state, moves):
            child = apply_move(state, move, mover).state
            score = self._minimax(child, depth - 1, alpha, beta)
            if maximizing:
                value = max(value, score)
                alpha = max(alpha, value)
            else:
                value = min(value, score)
                beta = min(beta, value)
            if alpha >= beta:
                break
        return value

    # ---- heuristics & eval ----

    def _ordered(self, state: GameState, moves: List[Position]) -> List[Position]:
        """Scoring moves first so cut-offs come early."""
        mover = state.current_player
        return sorted(
            moves, key=lambda m: _points_for(state.board, m, mover), reverse=True
        )

    def _terminal_value(self, state: GameState) -> float:
        if state.winner == self.player:
            return WIN_SCORE
        if state.winner == other(self.player):
            return -WIN_SCORE
        return 0.0

    def _evaluate(self, state: GameState) -> float:
        me: Player = self.player
        opp: Player = other(me)
        board = state.board
        points = (state.score.of(me) - state.score.of(opp)) * POINT_WEIGHT
        position = positional_evaluation(board, me) - positional_evaluation(board, opp)
        mobility = len(legal_moves(board, me, state.last_moves)) - len(
            legal_moves(board, opp, state.last_moves)
        )
        return points + position + mobility * MOBILITY_WEIGHT + self._noise()

    def _center_bias(self, move: Position) -> float:
        distance = abs(move[0] - CENTER) + abs(move[1] - CENTER)
        return CENTER_WEIGHT * (2 * CENTER - distance)

    def _noise(self) -> float:
        if self.jitter <= 0:
            return 0.0
        return self.rng.uniform(0.0, self.jitter)


def select_move(
    state: GameState,
    difficulty: Union[Difficulty, str],
    rng: Optional[random.Random] = None,
) -> Position:
    """Pick a move for whoever is to play in ``state``."""
    selector = MoveSelector(
        player=state.current_player,
        difficulty=difficulty,
        rng=rng if rng is not None else random.Random(),
    )
    return selector.choose(state)
