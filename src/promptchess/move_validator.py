"""
Move parsing helpers for LLM replies and engine output.

- extract_marked_move(): pull the token after a case-insensitive "MOVE:" marker out of free text.
- parse_move(): resolve a token to a legal chess.Move, accepting SAN (e4, Nf3+, O-O) or
  long algebraic UCI (e2e4, e7e8q). Returns None instead of raising.
"""
from __future__ import annotations

import re

import chess

MOVE_MARKER_RE = re.compile(r"move:\s*(\S+)", re.I)
UCI_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$", re.I)
CASTLE_ZERO = {"0-0": "O-O", "0-0-0": "O-O-O", "o-o": "O-O", "o-o-o": "O-O-O"}

# Markdown/quote decoration models like to wrap the move in
_DECORATION = "*`'\"[]()"


def _strip_code_fence(text: str) -> str:
    """Remove simple ``` fences if present."""
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        inner = text.split("\n", 1)
        if len(inner) == 2:
            return inner[1].rsplit("\n", 1)[0].strip()
    return text


def clean_token(token: str) -> str:
    token = token.strip().strip(_DECORATION)
    # trailing sentence punctuation, but keep check/mate suffixes
    token = token.rstrip(".,;:!?")
    return token.strip(_DECORATION)


def extract_marked_move(raw_text: str | None) -> str | None:
    """Return the first token following a MOVE: marker, or None if there is no marker."""
    if not raw_text:
        return None
    m = MOVE_MARKER_RE.search(_strip_code_fence(raw_text))
    if not m:
        return None
    token = clean_token(m.group(1))
    return token or None


def parse_move(board: chess.Board, token: str | None) -> chess.Move | None:
    """Resolve SAN or UCI text to a legal move on board, or None."""
    if not token:
        return None
    token = clean_token(token)
    token = CASTLE_ZERO.get(token.lower(), token)
    if UCI_RE.match(token):
        try:
            mv = chess.Move.from_uci(token.lower())
        except ValueError:
            mv = None
        if mv is not None and mv in board.legal_moves:
            return mv
    try:
        mv = board.parse_san(token)
    except ValueError:
        return None
    # parse_san hands back a null move for "--"/"0000" without a legality check
    return mv if mv and mv in board.legal_moves else None


def is_legal(board: chess.Board, token: str | None) -> bool:
    return parse_move(board, token) is not None


__all__ = [
    "extract_marked_move",
    "parse_move",
    "is_legal",
    "clean_token",
]
