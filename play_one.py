import argparse
import json
import logging

from promptchess.broadcast import LoggingBroadcaster
from promptchess.config import SETTINGS
from promptchess.jobs import RetryPolicy, run_match_job
from promptchess.models import AgentProfile, LlmCredentials
from promptchess.store import InMemoryStore, JsonFileStore


def load_json_config(path: str) -> dict:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as e:
        logging.getLogger("play_one").error("Failed to read config %s: %s", path, e)
        return {}


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description="Play one prompt-agent vs Stockfish match.")
    ap.add_argument("--config", default=None, help="Optional JSON config file to load defaults from.")
    ap.add_argument("--model", default=None, help="Target model name (overrides config and settings)")
    ap.add_argument("--provider", choices=["openai", "anthropic", "gateway"], default=None, help="LLM provider")
    ap.add_argument("--level", type=int, default=None, help="Engine strength 1-8")
    ap.add_argument("--agent-name", default=None, help="Agent display name")
    ap.add_argument("--persona", default=None, help="Agent personality/strategy prompt text")
    ap.add_argument("--fen", default=None, help="Optional starting position (agent is the side to move)")
    ap.add_argument("--max-plies", type=int, default=None, help="Draw by truncation after this many plies")
    ap.add_argument("--no-retry", action="store_true", help="Run once; do not retry failed runs")
    ap.add_argument("--out-dir", default=None, help="Write match.json/moves.json/game.pgn under this directory")
    ap.add_argument("--log-level", default=None, help="Python logging level (e.g., INFO, DEBUG)")

    args = ap.parse_args()

    cfg_dict = load_json_config(args.config) if args.config else {}

    # Resolve values with precedence: CLI arg if provided -> config -> default
    def pick(*keys, default=None):
        for k in keys:
            v = getattr(args, k, None)
            if v is not None:
                return v
            if k in cfg_dict and cfg_dict[k] is not None:
                return cfg_dict[k]
        return default

    log_level = pick("log_level", default="INFO").upper()
    logging.basicConfig(level=getattr(logging, log_level, logging.INFO), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    log = logging.getLogger("play_one")

    credentials = LlmCredentials(
        provider=pick("provider", default=SETTINGS.llm_provider),
        api_key=SETTINGS.llm_api_key,
        model=pick("model", default=SETTINGS.llm_model),
        base_url=SETTINGS.api_base or None,
    )
    agent_cfg = cfg_dict.get("agent") or {}
    agent = AgentProfile(
        name=args.agent_name or agent_cfg.get("name") or "Challenger",
        prompt_text=args.persona or agent_cfg.get("persona")
        or "A solid positional player who develops pieces and keeps the king safe.",
        role=agent_cfg.get("role"),
    )
    level = int(pick("level", default=5))
    out_dir = pick("out_dir", default=None)

    store = JsonFileStore(out_dir) if out_dir else InMemoryStore()
    agent = store.create_agent(agent)
    match = store.create_match(agent.id, level)
    policy = RetryPolicy(attempts={}) if args.no_retry else RetryPolicy()

    log.info("Starting match %s: model=%s provider=%s key=%s level=%d",
             match.id, credentials.model, credentials.provider, credentials.masked_key(), level)
    final = run_match_job(
        match.id, agent.id, level, credentials,
        store=store,
        broadcaster=LoggingBroadcaster(),
        policy=policy,
        starting_fen=pick("fen", default=None),
        max_plies=pick("max_plies", default=None),
    )

    print("Winner:", final.winner.value)
    print("Termination:", final.result_reason)
    print("Plies:", final.moves_count, " Tokens:", final.total_tokens_used, " Avg agent ms:", final.average_move_time_ms)
    print("PGN:\n", final.pgn)
