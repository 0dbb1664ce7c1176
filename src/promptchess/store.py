"""
Persistence collaborator for matches, moves and agents.

- MatchStore: the interface the orchestrator and job layer depend on.
- InMemoryStore: thread-safe reference implementation; enforces gapless ply numbers,
  the monotonic status lifecycle and non-negative counters.
- JsonFileStore: InMemoryStore that also writes <root>/<match_id>/{match,moves}.json after every
  change (and game.pgn once a PGN is stored) for later inspection.
"""
from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from dataclasses import replace
from typing import Dict, List, Optional

from .models import AgentProfile, Match, MatchStatus, Move, chess_move_number

log = logging.getLogger("store")

_COUNTERS = ("moves_count", "total_tokens_used", "total_cost_cents")


class MatchStore:
    """Interface; all methods must be safe to call from concurrent match runs."""

    def create_agent(self, agent: AgentProfile) -> AgentProfile:
        raise NotImplementedError

    def get_agent(self, agent_id: str) -> AgentProfile:
        raise NotImplementedError

    def create_match(self, agent_id: Optional[str], engine_level: int, retry_of: Optional[str] = None) -> Match:
        raise NotImplementedError

    def get_match(self, match_id: str) -> Match:
        raise NotImplementedError

    def update_match(self, match_id: str, **fields) -> Match:
        raise NotImplementedError

    def increment(self, match_id: str, field_name: str, by: int) -> Match:
        raise NotImplementedError

    def create_move(self, match_id: str, **fields) -> Move:
        raise NotImplementedError

    def list_moves(self, match_id: str) -> List[Move]:
        raise NotImplementedError

    def delete_match(self, match_id: str) -> None:
        raise NotImplementedError


class InMemoryStore(MatchStore):
    def __init__(self):
        self._lock = threading.RLock()
        self._agents: Dict[str, AgentProfile] = {}
        self._matches: Dict[str, Match] = {}
        self._moves: Dict[str, List[Move]] = {}

    # ---------------- Agents -----------------
    def create_agent(self, agent: AgentProfile) -> AgentProfile:
        agent.validate()
        with self._lock:
            agent = replace(agent, id=agent.id or uuid.uuid4().hex[:12])
            self._agents[agent.id] = agent
            return agent

    def get_agent(self, agent_id: str) -> AgentProfile:
        with self._lock:
            try:
                return self._agents[agent_id]
            except KeyError:
                raise KeyError(f"Agent {agent_id} not found") from None

    # ---------------- Matches -----------------
    def create_match(self, agent_id: Optional[str], engine_level: int, retry_of: Optional[str] = None) -> Match:
        with self._lock:
            match = Match(id=uuid.uuid4().hex[:12], agent_id=agent_id, engine_level=engine_level, retry_of=retry_of)
            self._matches[match.id] = match
            self._moves[match.id] = []
            self._changed(match.id)
            return replace(match)

    def _get(self, match_id: str) -> Match:
        try:
            return self._matches[match_id]
        except KeyError:
            raise KeyError(f"Match {match_id} not found") from None

    def get_match(self, match_id: str) -> Match:
        with self._lock:
            return replace(self._get(match_id))

    def update_match(self, match_id: str, **fields) -> Match:
        with self._lock:
            current = self._get(match_id)
            updated = replace(current)
            status = fields.pop("status", None)
            for name, value in fields.items():
                if not hasattr(updated, name) or name in ("id", "created_at"):
                    raise ValueError(f"Unknown or read-only match field '{name}'")
                setattr(updated, name, value)
            if status is not None:
                updated.transition(MatchStatus(status))
            updated.check_invariants()
            self._matches[match_id] = updated
            self._changed(match_id)
            return replace(updated)

    def increment(self, match_id: str, field_name: str, by: int) -> Match:
        if field_name not in _COUNTERS:
            raise ValueError(f"'{field_name}' is not a counter")
        with self._lock:
            value = getattr(self._get(match_id), field_name) + by
            if value < 0:
                raise ValueError(f"Match {match_id}: {field_name} cannot be negative")
            return self.update_match(match_id, **{field_name: value})

    def delete_match(self, match_id: str) -> None:
        with self._lock:
            self._get(match_id)
            del self._matches[match_id]
            self._moves.pop(match_id, None)

    # ---------------- Moves -----------------
    def create_move(self, match_id: str, **fields) -> Move:
        with self._lock:
            match = self._get(match_id)
            if match.status.terminal:
                raise ValueError(f"Match {match_id} is {match.status.value}; moves are frozen")
            moves = self._moves[match_id]
            expected = len(moves) + 1
            ply = fields.get("move_number", expected)
            if ply != expected:
                raise ValueError(f"Match {match_id}: expected ply {expected}, got {ply}")
            if moves and fields.get("board_state_before") != moves[-1].board_state_after:
                raise ValueError(f"Match {match_id}: ply {ply} does not continue from ply {ply - 1}")
            fields["move_number"] = ply
            fields.setdefault("chess_move_number", chess_move_number(ply))
            move = Move(match_id=match_id, **fields)
            moves.append(move)
            match.moves_count = len(moves)
            self._changed(match_id)
            return move

    def list_moves(self, match_id: str) -> List[Move]:
        with self._lock:
            self._get(match_id)
            return list(self._moves[match_id])

    def _changed(self, match_id: str) -> None:
        """Hook for subclasses; called with the lock held after every write."""


class JsonFileStore(InMemoryStore):
    def __init__(self, root_dir: str):
        super().__init__()
        self.root_dir = root_dir
        os.makedirs(root_dir, exist_ok=True)

    def match_dir(self, match_id: str) -> str:
        return os.path.join(self.root_dir, match_id)

    def _changed(self, match_id: str) -> None:
        match = self._matches.get(match_id)
        if match is None:
            return
        path = self.match_dir(match_id)
        try:
            os.makedirs(path, exist_ok=True)
            with open(os.path.join(path, "match.json"), "w", encoding="utf-8") as f:
                json.dump(match.to_dict(), f, ensure_ascii=False, indent=2)
            with open(os.path.join(path, "moves.json"), "w", encoding="utf-8") as f:
                json.dump([m.to_dict() for m in self._moves.get(match_id, [])], f, ensure_ascii=False, indent=2)
            if match.pgn:
                with open(os.path.join(path, "game.pgn"), "w", encoding="utf-8") as f:
                    f.write(match.pgn)
        except OSError:
            log.exception("Failed writing match %s to %s", match_id, path)
