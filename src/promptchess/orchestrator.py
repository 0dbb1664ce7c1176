"""
MatchOrchestrator: the per-match control loop between the prompt agent and the engine.

- run(): marks the match in_progress, starts one EngineProcess, alternates agent/engine turns
  (agent first) until the referee reports game over, then finalizes winner, reason, averages
  and PGN. Every persisted move is broadcast.
- Any failure marks the match errored exactly once, broadcasts a generic error notice and is
  re-raised for the job layer. The engine is closed on every exit path.
"""
from __future__ import annotations

import logging
import statistics
from typing import Callable, List, Optional

from .broadcast import Broadcaster, LoggingBroadcaster, error_payload, match_updated_payload
from .config import SETTINGS
from .engine_process import EngineProcess
from .models import (
    AgentProfile,
    Match,
    MatchStatus,
    Move,
    Player,
    Winner,
    utcnow,
    validate_engine_level,
)
from .move_generator import MoveGenerator
from .referee import CHECKMATE, Position, Referee
from .store import MatchStore

log = logging.getLogger("orchestrator")

MAX_PLIES_REACHED = "max_plies_reached"


class MatchOrchestrator:
    def __init__(
        self,
        store: MatchStore,
        move_generator: MoveGenerator,
        broadcaster: Broadcaster | None = None,
        engine_factory: Callable[[], EngineProcess] = EngineProcess,
        referee: Referee | None = None,
        max_plies: int | None = None,
        cost_cents_per_1k_tokens: float | None = None,
    ):
        self.store = store
        self.move_generator = move_generator
        self.broadcaster = broadcaster or LoggingBroadcaster()
        self.engine_factory = engine_factory
        self.referee = referee or move_generator.referee
        self.max_plies = max_plies
        self.cost_rate = SETTINGS.cost_cents_per_1k_tokens if cost_cents_per_1k_tokens is None else cost_cents_per_1k_tokens

    # ---------------- Entry point -----------------
    def run(self, match_id: str, agent: AgentProfile, engine_strength: Optional[int] = None) -> Match:
        match = self.store.get_match(match_id)
        level = validate_engine_level(engine_strength if engine_strength is not None else match.engine_level)
        self.store.update_match(match_id, status=MatchStatus.IN_PROGRESS, started_at=utcnow(), engine_level=level)
        log.info("Match %s started: agent=%s engine_level=%d", match_id, agent.name, level)

        try:
            engine = self.engine_factory()
            try:
                engine.start(level)
                position, truncated = self._play(match_id, agent, engine)
            finally:
                engine.close()
            return self._finalize(match_id, agent, position, truncated)
        except BaseException as e:
            # interrupts too: the match must not stay in_progress
            self._mark_errored(match_id, e)
            raise

    # ---------------- Turn loop -----------------
    def _play(self, match_id: str, agent: AgentProfile, engine: EngineProcess) -> tuple[Position, bool]:
        position = self.referee.current_position()
        history: List[str] = []
        player = Player.AGENT
        while not self.referee.is_game_over(position):
            if self.max_plies is not None and len(history) >= self.max_plies:
                log.info("Match %s truncated at %d plies", match_id, len(history))
                return position, True
            if player is Player.AGENT:
                position = self._agent_turn(match_id, agent, position, history)
            else:
                position = self._engine_turn(match_id, engine, position)
            history.append(position.last_move)
            player = player.other
        return position, False

    def _next_ply(self, match_id: str) -> int:
        return self.store.get_match(match_id).moves_count + 1

    def _agent_turn(self, match_id: str, agent: AgentProfile, position: Position, history: List[str]) -> Position:
        result = self.move_generator.generate_move(agent, position, history)
        after = self.referee.apply(position, result.move)
        ply = self._next_ply(match_id)
        move = self.store.create_move(
            match_id,
            move_number=ply,
            player=Player.AGENT,
            move_notation=after.last_move,
            board_state_before=position.fen,
            board_state_after=after.fen,
            llm_prompt=result.prompt,
            llm_response=result.response,
            tokens_used=result.tokens,
            retry_count=result.retry_count,
            response_time_ms=result.time_ms,
        )
        match = self.store.increment(match_id, "total_tokens_used", result.tokens)
        if self.cost_rate:
            match = self.store.update_match(
                match_id, total_cost_cents=round(match.total_tokens_used * self.cost_rate / 1000))
        log.info("[ply %d] agent: move=%s tokens=%d retries=%d time_ms=%d",
                 ply, move.move_notation, result.tokens, result.retry_count, result.time_ms)
        self._publish(match_id, match_updated_payload(match, move))
        return after

    def _engine_turn(self, match_id: str, engine: EngineProcess, position: Position) -> Position:
        notation, elapsed_ms = engine.best_move(position)
        after = self.referee.apply(position, notation)
        ply = self._next_ply(match_id)
        move = self.store.create_move(
            match_id,
            move_number=ply,
            player=Player.ENGINE,
            move_notation=after.last_move,
            board_state_before=position.fen,
            board_state_after=after.fen,
            response_time_ms=elapsed_ms,
        )
        log.info("[ply %d] engine: move=%s time_ms=%d", ply, move.move_notation, elapsed_ms)
        self._publish(match_id, match_updated_payload(self.store.get_match(match_id), move))
        return after

    # ---------------- Finalization -----------------
    def _finalize(self, match_id: str, agent: AgentProfile, position: Position, truncated: bool) -> Match:
        moves = self.store.list_moves(match_id)
        reason = MAX_PLIES_REACHED if truncated else self.referee.result(position)
        winner = self._winner(reason, moves)
        agent_times = [m.response_time_ms for m in moves if m.player is Player.AGENT]
        avg_time = int(statistics.mean(agent_times)) if agent_times else None

        match = self.store.update_match(
            match_id,
            status=MatchStatus.COMPLETED,
            completed_at=utcnow(),
            winner=winner,
            result_reason=reason,
            final_board_state=position.fen,
            average_move_time_ms=avg_time,
            pgn=self._pgn(agent, position, winner),
        )
        log.info("Match %s finished winner=%s reason=%s plies=%d", match_id, winner.value, reason, len(moves))
        self._publish(match_id, match_updated_payload(match, moves[-1] if moves else None))
        return match

    def _winner(self, reason: str | None, moves: List[Move]) -> Winner:
        if reason != CHECKMATE:
            return Winner.DRAW
        if not moves:
            # mated in the starting position: the agent was to move
            return Winner.ENGINE
        return Winner.AGENT if moves[-1].player is Player.AGENT else Winner.ENGINE

    def _pgn(self, agent: AgentProfile, position: Position, winner: Winner) -> str:
        agent_white = self.referee.current_position().white_to_move
        white, black = (agent.name, "Stockfish") if agent_white else ("Stockfish", agent.name)
        if winner is Winner.DRAW:
            result = "1/2-1/2"
        elif (winner is Winner.AGENT) == agent_white:
            result = "1-0"
        else:
            result = "0-1"
        return self.referee.pgn(position, white=white, black=black, result=result)

    # ---------------- Failure / broadcast -----------------
    def _mark_errored(self, match_id: str, exc: Exception) -> None:
        try:
            match = self.store.update_match(
                match_id, status=MatchStatus.ERRORED, error_message=f"{type(exc).__name__}: {exc}")
        except Exception:
            log.exception("Could not mark match %s as errored", match_id)
            return
        log.error("Match %s errored: %s", match_id, match.error_message)
        self._publish(match_id, error_payload(match))

    def _publish(self, match_id: str, payload: dict) -> None:
        try:
            self.broadcaster.publish(match_id, payload)
        except Exception:
            log.exception("Broadcast failed for match %s", match_id)
