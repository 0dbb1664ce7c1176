"""
Stockfish-backed engine process owned by a single match run.

- start(level): launches the UCI engine (uci/uciok handshake), applies the strength table and
  waits for isready/readyok, all within the handshake timeout.
- best_move(position): searches for a fixed think time and returns (SAN, elapsed_ms).
- close(): quit, then force-kill; idempotent and never raises.

Lifecycle: unstarted → ready → closed. A closed process cannot be restarted.
A weakref finalizer kills the subprocess if the object is dropped without close().
"""
from __future__ import annotations

import asyncio
import logging
import time
import weakref

import chess
import chess.engine

from .config import SETTINGS
from .errors import (
    EngineCrashedError,
    EngineProtocolError,
    EngineStartError,
    EngineTimeoutError,
)
from .models import MAX_ENGINE_LEVEL, validate_engine_level
from .referee import Position

log = logging.getLogger("engine_process")

# 1 = very weak ... 8 = native full strength
LEVEL_TO_UCI_SKILL = {
    1: 1,
    2: 4,
    3: 7,
    4: 10,
    5: 13,
    6: 16,
    7: 19,
    8: 20,
}

UNSTARTED = "unstarted"
READY = "ready"
CLOSED = "closed"

_TIMEOUTS = (asyncio.TimeoutError, TimeoutError)


def level_to_elo(level: int) -> int:
    """Approximate Elo ceiling for levels 1-7 (level 1 ≈ 1000)."""
    return 700 + level * 300


def strength_options(level: int) -> dict:
    """UCI options for a strength level, before clamping to what the engine supports."""
    validate_engine_level(level)
    opts: dict = {"Skill Level": LEVEL_TO_UCI_SKILL[level]}
    if level < MAX_ENGINE_LEVEL:
        opts["UCI_LimitStrength"] = True
        opts["UCI_Elo"] = level_to_elo(level)
    return opts


def _shutdown(engine: chess.engine.SimpleEngine) -> None:
    # finalizer callback: must not reference the EngineProcess itself
    try:
        engine.close()
    except Exception:
        log.debug("Engine already gone during finalizer", exc_info=True)


def uci_to_notation(position: Position, uci: str) -> str:
    """Translate the engine's from/to-square move into SAN for position.

    Every legal move is compared by from-square, to-square and promotion piece. Falls back to the
    raw UCI string when nothing matches; raises EngineProtocolError when more than one does.
    """
    board = position._board()
    try:
        target = chess.Move.from_uci(uci)
    except ValueError:
        log.warning("Engine returned unparseable move %r; passing it through", uci)
        return uci
    candidates = [
        mv for mv in board.legal_moves
        if mv.from_square == target.from_square
        and mv.to_square == target.to_square
        and (target.promotion is None or mv.promotion == target.promotion)
    ]
    if len(candidates) == 1:
        return board.san(candidates[0])
    if not candidates:
        log.warning("Engine move %s matches no legal move in %s; using raw UCI", uci, position.fen)
        return uci
    options = ", ".join(sorted(board.san(mv) for mv in candidates))
    raise EngineProtocolError(f"Engine move {uci} is ambiguous in {position.fen}: {options}")


class EngineProcess:
    def __init__(
        self,
        engine_path: str | None = None,
        handshake_timeout_s: float | None = None,
        move_timeout_s: float | None = None,
        think_ms: int | None = None,
        quit_timeout_s: float | None = None,
    ):
        self.engine_path = engine_path or SETTINGS.stockfish_path
        self.handshake_timeout_s = handshake_timeout_s or SETTINGS.engine_handshake_timeout_s
        self.move_timeout_s = move_timeout_s or SETTINGS.engine_move_timeout_s
        self.think_ms = think_ms or SETTINGS.engine_think_ms
        self.quit_timeout_s = quit_timeout_s or SETTINGS.engine_quit_timeout_s
        self.level: int | None = None
        self.state = UNSTARTED
        self._engine: chess.engine.SimpleEngine | None = None
        self._finalizer: weakref.finalize | None = None

    # ---------------- Lifecycle -----------------
    def start(self, level: int) -> "EngineProcess":
        validate_engine_level(level)
        if self.state != UNSTARTED:
            raise RuntimeError(f"EngineProcess.start() called in state '{self.state}'")
        self.level = level
        try:
            self._engine = chess.engine.SimpleEngine.popen_uci(self.engine_path, timeout=self.handshake_timeout_s)
        except _TIMEOUTS as e:
            self.state = CLOSED
            raise EngineStartError(f"Engine handshake timed out after {self.handshake_timeout_s}s ({self.engine_path})") from e
        except (OSError, chess.engine.EngineError) as e:
            self.state = CLOSED
            raise EngineStartError(f"Failed launching engine at '{self.engine_path}': {e}") from e
        self._finalizer = weakref.finalize(self, _shutdown, self._engine)
        try:
            self._configure(level)
            self._engine.ping()  # isready / readyok
        except _TIMEOUTS as e:
            self.close()
            raise EngineStartError(f"Engine did not become ready within {self.handshake_timeout_s}s") from e
        except chess.engine.EngineError as e:
            self.close()
            raise EngineStartError(f"Engine rejected configuration: {e}") from e
        self._engine.timeout = self.move_timeout_s
        self.state = READY
        log.info("Engine ready path=%s level=%d", self.engine_path, level)
        return self

    def _configure(self, level: int) -> None:
        advertised = self._engine.options
        opts = {}
        for name, value in strength_options(level).items():
            option = advertised.get(name)
            if option is None:
                log.warning("Engine does not support option '%s'; skipping", name)
                continue
            if name == "UCI_Elo":
                if option.min is not None:
                    value = max(value, option.min)
                if option.max is not None:
                    value = min(value, option.max)
            opts[name] = value
        if opts:
            self._engine.configure(opts)

    def best_move(self, position: Position) -> tuple[str, int]:
        """Search position for think_ms and return (SAN move, elapsed ms)."""
        if self.state != READY:
            raise RuntimeError(f"EngineProcess.best_move() called in state '{self.state}'")
        board = position._board()
        t0 = time.monotonic()
        try:
            result = self._engine.play(board, chess.engine.Limit(time=self.think_ms / 1000))
        except _TIMEOUTS as e:
            raise EngineTimeoutError(f"Engine timed out after {self.move_timeout_s}s") from e
        except chess.engine.EngineTerminatedError as e:
            raise EngineCrashedError(f"Engine process died: {e}") from e
        except (chess.engine.EngineError, BrokenPipeError, ConnectionError) as e:
            raise EngineCrashedError(f"Engine error: {e}") from e
        elapsed_ms = int((time.monotonic() - t0) * 1000)
        if result.move is None:
            raise EngineProtocolError(f"Engine returned no move for {position.fen}")
        return uci_to_notation(position, result.move.uci()), elapsed_ms

    def close(self) -> None:
        if self.state == CLOSED and self._engine is None:
            return
        engine, self._engine = self._engine, None
        self.state = CLOSED
        if self._finalizer is not None:
            self._finalizer.detach()
            self._finalizer = None
        if engine is None:
            return
        try:
            engine.timeout = self.quit_timeout_s
            engine.quit()
        except Exception as e:
            log.warning("Error closing engine gracefully: %s", e)
        finally:
            try:
                engine.close()
            except Exception as e:
                log.warning("Error terminating engine process: %s", e)

    # ---------------- Scoped use -----------------
    def __enter__(self) -> "EngineProcess":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
