"""
Agent move generation: prompt → completion → parse → legality check, with retries.

Parse and legality failures are retried up to max_attempts with an increasingly explicit prompt.
Transport failures (LlmApiError) are never retried here; they propagate on the first occurrence.
Prompts, responses, tokens and time are accumulated over every attempt so the persisted move
reflects the full cost of the turn.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .config import SETTINGS
from .errors import ConfigurationError, InvalidMoveError
from .llm_client import LLMClient
from .models import AgentProfile, LlmCredentials
from .move_validator import extract_marked_move
from .prompting import PromptConfig, build_move_prompt, retry_separator
from .referee import Position, Referee

log = logging.getLogger("move_generator")


@dataclass(frozen=True)
class GeneratedMove:
    move: str
    prompt: str
    response: str
    tokens: int
    time_ms: int
    retry_count: int


class MoveGenerator:
    def __init__(
        self,
        credentials: Optional[LlmCredentials],
        referee: Referee | None = None,
        max_attempts: int | None = None,
        prompt_cfg: PromptConfig | None = None,
        client_factory: Callable[[LlmCredentials], LLMClient] = LLMClient,
    ):
        self.credentials = credentials
        self.referee = referee or Referee()
        self.max_attempts = max_attempts or SETTINGS.max_move_attempts
        self.prompt_cfg = prompt_cfg or PromptConfig()
        self._client_factory = client_factory
        self._client: LLMClient | None = None

    def _get_client(self) -> LLMClient:
        if self.credentials is None or not self.credentials.is_complete():
            raise ConfigurationError("LLM API is not configured (provider, api_key and model are required)")
        if self._client is None:
            self._client = self._client_factory(self.credentials)
        return self._client

    def generate_move(self, agent: AgentProfile, position: Position, history: Sequence[str]) -> GeneratedMove:
        """Return a legal SAN move for the side to move in position.

        history is the SAN list of plies played so far. Raises InvalidMoveError once every
        attempt failed, LlmApiError immediately on transport failure.
        """
        client = self._get_client()
        side = "White" if position.white_to_move else "Black"
        prompts: list[str] = []
        responses: list[str] = []
        total_tokens = 0
        elapsed_ms = 0
        last_move: str | None = None
        last_response = ""
        failure: str | None = None

        for attempt in range(1, self.max_attempts + 1):
            prompt = build_move_prompt(
                agent_name=agent.name,
                persona=agent.prompt_text,
                fen=position.fen,
                history=history,
                legal_moves=self.referee.legal_moves(position),
                side_to_move=side,
                attempt=attempt,
                max_attempts=self.max_attempts,
                failure_reason=failure,
                cfg=self.prompt_cfg,
            )
            t0 = time.monotonic()
            completion = client.complete(prompt)
            elapsed_ms += int((time.monotonic() - t0) * 1000)
            total_tokens += completion.total_tokens
            prompts.append(prompt)
            responses.append(completion.content)
            last_response = completion.content

            candidate = extract_marked_move(completion.content)
            log.debug("Attempt %d/%d raw='%s' candidate=%s", attempt, self.max_attempts,
                      _short(completion.content), candidate)
            if candidate is None:
                last_move = None
                failure = "no 'MOVE: <move>' line found"
                continue
            last_move = candidate
            if not self.referee.is_legal(position, candidate):
                failure = f"'{candidate}' is not a legal move"
                continue

            san = self.referee.to_san(position, candidate) or candidate
            return GeneratedMove(
                move=san,
                prompt=_join_attempts(prompts),
                response=_join_attempts(responses),
                tokens=total_tokens,
                time_ms=elapsed_ms,
                retry_count=attempt - 1,
            )

        if last_move is None:
            message = (f"Could not parse move from response after {self.max_attempts} attempts: "
                       f"{_short(last_response)}")
        else:
            message = f"Invalid move suggested: {last_move} (after {self.max_attempts} attempts)"
        log.warning("Agent %s failed to produce a legal move: %s", agent.name, message)
        raise InvalidMoveError(message, attempts=self.max_attempts, last_move=last_move,
                               last_response=last_response)


def _join_attempts(parts: list[str]) -> str:
    out = parts[0]
    for idx, part in enumerate(parts[1:], start=2):
        out += retry_separator(idx) + part
    return out


def _short(text: str, limit: int = 140) -> str:
    text = (text or "").replace("\n", " ")
    return text if len(text) <= limit else text[:limit] + "…"
