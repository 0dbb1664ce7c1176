"""
Match records and their value types.

- AgentProfile: the prompt persona driving the language-model side.
- LlmCredentials: provider/key/model handed to the move generator by the caller.
- Match: one game against the engine, with lifecycle status and cumulative counters.
- Move: one ply, immutable once created.

Status lifecycle: pending → in_progress → {completed | errored}. Terminal states never move again.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MatchStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERRORED = "errored"

    @property
    def terminal(self) -> bool:
        return self in (MatchStatus.COMPLETED, MatchStatus.ERRORED)


class Winner(str, Enum):
    AGENT = "agent"
    ENGINE = "engine"
    DRAW = "draw"


class Player(str, Enum):
    AGENT = "agent"
    ENGINE = "engine"

    @property
    def other(self) -> "Player":
        return Player.ENGINE if self is Player.AGENT else Player.AGENT


_ALLOWED_TRANSITIONS = {
    MatchStatus.PENDING: {MatchStatus.IN_PROGRESS, MatchStatus.ERRORED},
    MatchStatus.IN_PROGRESS: {MatchStatus.COMPLETED, MatchStatus.ERRORED},
    MatchStatus.COMPLETED: set(),
    MatchStatus.ERRORED: set(),
}

MIN_ENGINE_LEVEL = 1
MAX_ENGINE_LEVEL = 8


def validate_engine_level(level: int) -> int:
    if not isinstance(level, int) or not (MIN_ENGINE_LEVEL <= level <= MAX_ENGINE_LEVEL):
        raise ValueError(f"Engine level must be between {MIN_ENGINE_LEVEL} and {MAX_ENGINE_LEVEL}, got {level!r}")
    return level


def chess_move_number(ply: int) -> int:
    """Traditional move-pair number: plies 1 & 2 share move 1, 3 & 4 share move 2, ..."""
    return math.ceil(ply / 2)


@dataclass
class AgentProfile:
    name: str
    prompt_text: str
    role: Optional[str] = None
    configuration: dict = field(default_factory=dict)
    id: Optional[str] = None

    def validate(self) -> "AgentProfile":
        if not self.name or len(self.name) > 100:
            raise ValueError("Agent name must be 1-100 characters")
        if not self.prompt_text or not (10 <= len(self.prompt_text) <= 10_000):
            raise ValueError("Agent prompt_text must be 10-10000 characters")
        if self.role and len(self.role) > 50:
            raise ValueError("Agent role must be at most 50 characters")
        if self.configuration is None:
            raise ValueError("Agent configuration can't be blank")
        return self


@dataclass(frozen=True)
class LlmCredentials:
    provider: str
    api_key: str
    model: str
    base_url: Optional[str] = None

    def is_complete(self) -> bool:
        return bool(self.provider and self.api_key and self.model)

    def masked_key(self) -> str | None:
        if not self.api_key:
            return None
        return f"...{self.api_key[-4:]}"

    def __repr__(self) -> str:  # keep the key out of logs and tracebacks
        return f"LlmCredentials(provider={self.provider!r}, model={self.model!r}, api_key={self.masked_key()!r})"


def _jsonable(d: dict) -> dict:
    out: dict[str, Any] = {}
    for k, v in d.items():
        if isinstance(v, Enum):
            out[k] = v.value
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        else:
            out[k] = v
    return out


@dataclass
class Match:
    id: str
    agent_id: Optional[str]
    engine_level: int
    status: MatchStatus = MatchStatus.PENDING
    winner: Optional[Winner] = None
    result_reason: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    moves_count: int = 0
    total_tokens_used: int = 0
    total_cost_cents: int = 0
    average_move_time_ms: Optional[int] = None
    final_board_state: Optional[str] = None
    error_message: Optional[str] = None
    pgn: Optional[str] = None
    retry_of: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        validate_engine_level(self.engine_level)
        self.status = MatchStatus(self.status)
        if self.winner is not None:
            self.winner = Winner(self.winner)

    def can_transition(self, new_status: MatchStatus) -> bool:
        return MatchStatus(new_status) in _ALLOWED_TRANSITIONS[self.status]

    def transition(self, new_status: MatchStatus) -> None:
        new_status = MatchStatus(new_status)
        if new_status is self.status:
            return
        if not self.can_transition(new_status):
            raise ValueError(f"Match {self.id}: illegal status transition {self.status.value} -> {new_status.value}")
        self.status = new_status

    def check_invariants(self) -> None:
        for name in ("moves_count", "total_tokens_used", "total_cost_cents"):
            if getattr(self, name) < 0:
                raise ValueError(f"Match {self.id}: {name} cannot be negative")
        decided = self.winner is not None and self.result_reason is not None
        undecided = self.winner is None and self.result_reason is None
        if self.status is MatchStatus.COMPLETED and not decided:
            raise ValueError(f"Match {self.id}: completed matches need winner and result_reason")
        if self.status is not MatchStatus.COMPLETED and not undecided:
            raise ValueError(f"Match {self.id}: winner/result_reason only allowed on completed matches")

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))


@dataclass(frozen=True)
class Move:
    match_id: str
    move_number: int
    chess_move_number: int
    player: Player
    move_notation: str
    board_state_before: str
    board_state_after: str
    response_time_ms: int
    llm_prompt: Optional[str] = None
    llm_response: Optional[str] = None
    tokens_used: Optional[int] = None
    retry_count: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        object.__setattr__(self, "player", Player(self.player))
        if self.move_number < 1:
            raise ValueError("move_number must be positive")
        if not self.move_notation:
            raise ValueError("move_notation can't be blank")
        if not self.board_state_before or not self.board_state_after:
            raise ValueError("board states can't be blank")
        if self.response_time_ms is None or self.response_time_ms < 0:
            raise ValueError("response_time_ms must be >= 0")
        agent_fields = (self.llm_prompt, self.llm_response, self.tokens_used)
        if self.player is Player.ENGINE and any(v is not None for v in agent_fields):
            raise ValueError("engine moves carry no prompt/response/token fields")
        if self.player is Player.AGENT and any(v is None for v in agent_fields):
            raise ValueError("agent moves need prompt, response and token fields")

    def to_dict(self) -> dict:
        return _jsonable(asdict(self))
