"""Exception taxonomy shared by the referee, engine, move generator and orchestrator."""
from __future__ import annotations


class PromptChessError(Exception):
    """Base class for all match-run failures."""


class IllegalMove(PromptChessError):
    """The referee refused to apply a move (callers must legality-check first)."""


class EngineError(PromptChessError):
    """Base class for engine subprocess failures."""


class EngineStartError(EngineError):
    """Spawn or UCI handshake did not complete."""


class EngineTimeoutError(EngineError):
    """The engine did not answer within its time budget."""


class EngineCrashedError(EngineError):
    """The engine process exited or its pipes broke."""


class EngineProtocolError(EngineError):
    """The engine answered with something that cannot be turned into a single move."""


class InvalidMoveError(PromptChessError):
    """The language model used up its attempts without producing a legal move."""

    def __init__(self, message: str, attempts: int = 0, last_move: str | None = None,
                 last_response: str | None = None):
        super().__init__(message)
        self.attempts = attempts
        self.last_move = last_move
        self.last_response = last_response


class LlmApiError(PromptChessError):
    """Transport or auth failure talking to the language-model API."""

    def __init__(self, message: str, retryable: bool = False):
        super().__init__(message)
        self.retryable = retryable


class ConfigurationError(PromptChessError):
    """Required model credentials were not supplied."""


__all__ = [
    "PromptChessError",
    "IllegalMove",
    "EngineError",
    "EngineStartError",
    "EngineTimeoutError",
    "EngineCrashedError",
    "EngineProtocolError",
    "InvalidMoveError",
    "LlmApiError",
    "ConfigurationError",
]
