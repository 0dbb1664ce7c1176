"""
Referee: the rules adapter between the match loop and python-chess.

- Position is an immutable snapshot (FEN + legal SAN moves) that also carries the move stack,
  so repetition-based draws are still detected after many applies.
- apply() never mutates its input; it returns the next Position or raises IllegalMove.
- result() reports how a finished game ended: 'checkmate', 'stalemate', another python-chess
  termination name for automatic draws, or None while the game is still running.
- pgn() exports the moves leading to a Position.
"""
from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import Optional

import chess
import chess.pgn

from .errors import IllegalMove
from .move_validator import parse_move

CHECKMATE = "checkmate"
STALEMATE = "stalemate"


@dataclass(frozen=True)
class Position:
    fen: str
    legal_moves: frozenset[str]
    last_move: Optional[str] = None  # SAN of the move that produced this position
    board: chess.Board = field(repr=False, compare=False, default=None)

    @classmethod
    def from_board(cls, board: chess.Board, last_move: str | None = None) -> "Position":
        snapshot = board.copy()
        legal = frozenset(snapshot.san(mv) for mv in snapshot.legal_moves)
        return cls(fen=snapshot.fen(), legal_moves=legal, last_move=last_move, board=snapshot)

    @property
    def white_to_move(self) -> bool:
        return self.fen.split()[1] == "w"

    def _board(self) -> chess.Board:
        return self.board.copy() if self.board is not None else chess.Board(self.fen)


class Referee:
    """Plain chess referee around python-chess Board."""

    def __init__(self, starting_fen: str | None = None):
        try:
            board = chess.Board(fen=starting_fen) if starting_fen else chess.Board()
        except ValueError as e:
            raise ValueError(f"Invalid FEN: {starting_fen!r} ({e})") from e
        self._start = Position.from_board(board)

    # ---------------- Queries -----------------
    def current_position(self) -> Position:
        """The position a new match starts from."""
        return self._start

    def legal_moves(self, position: Position) -> set[str]:
        return set(position.legal_moves)

    def is_legal(self, position: Position, move: str | None) -> bool:
        return parse_move(position._board(), move) is not None

    def to_san(self, position: Position, move: str) -> str | None:
        board = position._board()
        mv = parse_move(board, move)
        return board.san(mv) if mv is not None else None

    def is_game_over(self, position: Position) -> bool:
        return position._board().is_game_over()

    def result(self, position: Position) -> str | None:
        outcome = position._board().outcome()
        if outcome is None:
            return None
        if outcome.termination == chess.Termination.CHECKMATE:
            return CHECKMATE
        if outcome.termination == chess.Termination.STALEMATE:
            return STALEMATE
        return outcome.termination.name.lower()

    # ---------------- Move Application -----------------
    def apply(self, position: Position, move: str) -> Position:
        """Return the position after move. Raises IllegalMove if move is not legal here."""
        board = position._board()
        mv = parse_move(board, move)
        if mv is None:
            raise IllegalMove(f"Illegal move: {move} in {position.fen}")
        san = board.san(mv)
        board.push(mv)
        return Position.from_board(board, last_move=san)

    # ---------------- PGN -----------------
    def pgn(self, position: Position, white: str = "?", black: str = "?",
            event: str = "PromptChess Match", result: str | None = None) -> str:
        board = position._board()
        game = chess.pgn.Game.from_board(board)
        game.headers["Event"] = event
        game.headers["Date"] = datetime.date.today().strftime("%Y.%m.%d")
        game.headers["White"] = white
        game.headers["Black"] = black
        if result:
            game.headers["Result"] = result
        exporter = chess.pgn.StringExporter(headers=True, variations=False, comments=False)
        return game.accept(exporter)
