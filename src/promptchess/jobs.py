"""
Invocation boundary for the job layer and its outer retry policy.

run_match_job() wires store, broadcaster, move generator and engine into a MatchOrchestrator and
runs one match. When a run fails with an error the policy allows to retry, a fresh pending match
(retry_of → failed match) is created and run; the errored match itself is never revived.
"""
from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Type

from .broadcast import Broadcaster
from .config import SETTINGS
from .engine_process import EngineProcess
from .errors import (
    EngineCrashedError,
    EngineTimeoutError,
    LlmApiError,
)
from .models import LlmCredentials, Match
from .move_generator import MoveGenerator
from .orchestrator import MatchOrchestrator
from .referee import Referee
from .store import MatchStore

log = logging.getLogger("jobs")


def _default_attempts() -> Dict[Type[Exception], int]:
    return {
        EngineTimeoutError: SETTINGS.retry_engine_timeout,
        EngineCrashedError: SETTINGS.retry_engine_crash,
        LlmApiError: SETTINGS.retry_llm_api,
    }


@dataclass
class RetryPolicy:
    """Total attempts per error class; anything not listed runs once."""

    attempts: Dict[Type[Exception], int] = field(default_factory=_default_attempts)
    base_wait_s: float = field(default_factory=lambda: SETTINGS.retry_wait_s)
    max_wait_s: float = 60.0
    sleep: Callable[[float], None] = time.sleep

    def attempts_for(self, exc: Exception) -> int:
        if isinstance(exc, LlmApiError) and not exc.retryable:
            return 1
        for cls in type(exc).__mro__:
            if cls in self.attempts:
                return self.attempts[cls]
        return 1

    def wait_s(self, attempt: int) -> float:
        # exponential backoff with jitter
        delay = self.base_wait_s * (2 ** (attempt - 1)) * (0.8 + 0.4 * random.random())
        return min(delay, self.max_wait_s)


def run_match_job(
    match_id: str,
    agent_id: str,
    engine_strength: int,
    credentials: Optional[LlmCredentials],
    *,
    store: MatchStore,
    broadcaster: Broadcaster | None = None,
    policy: RetryPolicy | None = None,
    engine_factory: Callable[[], EngineProcess] = EngineProcess,
    move_generator_factory: Callable[..., MoveGenerator] = MoveGenerator,
    starting_fen: str | None = None,
    max_plies: int | None = None,
) -> Match:
    """Run a match to completion, retrying whole runs per policy. Raises the last error."""
    policy = policy or RetryPolicy()
    agent = store.get_agent(agent_id)
    attempt = 1
    current_id = match_id
    while True:
        generator = move_generator_factory(credentials, referee=Referee(starting_fen))
        orchestrator = MatchOrchestrator(
            store=store,
            move_generator=generator,
            broadcaster=broadcaster,
            engine_factory=engine_factory,
            max_plies=max_plies,
        )
        try:
            return orchestrator.run(current_id, agent, engine_strength)
        except Exception as e:
            budget = policy.attempts_for(e)
            if attempt >= budget:
                log.error("Match job for %s gave up after %d attempt(s): %s", match_id, attempt, e)
                raise
            wait = policy.wait_s(attempt)
            log.warning("Match %s failed (%s: %s); retry %d/%d in %.1fs",
                        current_id, type(e).__name__, e, attempt + 1, budget, wait)
            policy.sleep(wait)
            attempt += 1
            current_id = store.create_match(agent_id, engine_strength, retry_of=current_id).id
