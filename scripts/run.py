"""
RUN.py: experiment runner
- Sweeps one or more JSON config files and plays several agent-vs-Stockfish matches per config.
- Matches run concurrently (up to max_concurrency); each owns its own engine subprocess.
- Each match is written under <out_dir>/<match_id>/ and summarized in <out_dir>/results.jsonl.
- Prints a grand summary (agent W/D/L, errored runs, avg plies, tokens, latency, wall time).
Usage: python -u scripts/run.py --configs "configs/*.json"
Config keys: model, provider, level, games, out_dir, agent {name, persona}, max_plies, log_level.
"""
import argparse, json, logging, os, sys, glob, statistics, time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Dict

from promptchess.broadcast import LoggingBroadcaster
from promptchess.config import SETTINGS
from promptchess.jobs import run_match_job
from promptchess.models import AgentProfile, LlmCredentials
from promptchess.store import JsonFileStore


def load_json(path: str) -> Dict:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def collect_config_files(spec: str) -> List[str]:
    files: List[str] = []
    parts = [p.strip() for p in spec.split(',') if p.strip()]
    for p in parts:
        if any(ch in p for ch in ['*', '?', '[']):
            files.extend(glob.glob(p))
        elif os.path.isdir(p):
            files.extend(glob.glob(os.path.join(p, '*.json')))
        elif os.path.isfile(p):
            files.append(p)
    return sorted(set(files))


def _parse_log_level(name: str | None) -> int:
    name = (name or "INFO").upper()
    return getattr(logging, name, logging.INFO)


def build_entry_from_dict(d: Dict) -> Dict:
    model = d.get('model') or SETTINGS.llm_model
    if not model or not isinstance(model, str) or not model.strip():
        raise ValueError("Config must include a non-empty 'model' string (e.g., 'gpt-4o-mini').")
    out_dir = d.get('out_dir')
    if not isinstance(out_dir, str) or not out_dir.strip():
        raise ValueError("Config must include a non-empty 'out_dir' path (e.g., 'runs/test/').")
    agent_cfg = d.get('agent', {}) or {}
    agent = AgentProfile(
        name=agent_cfg.get('name', 'Challenger'),
        prompt_text=agent_cfg.get('persona', 'A solid positional player who develops pieces and keeps the king safe.'),
        role=agent_cfg.get('role'),
    ).validate()
    return {
        'credentials': LlmCredentials(
            provider=d.get('provider') or SETTINGS.llm_provider,
            api_key=SETTINGS.llm_api_key,
            model=model,
            base_url=d.get('base_url') or SETTINGS.api_base or None,
        ),
        'agent': agent,
        'level': int(d.get('level', 5)),
        'games': int(d.get('games', 1)),
        'out_dir': out_dir,
        'max_plies': d.get('max_plies'),
    }


def run_config(entry: Dict, config_name: str, pool: ThreadPoolExecutor) -> List[Dict]:
    store = JsonFileStore(entry['out_dir'])
    agent = store.create_agent(entry['agent'])
    broadcaster = LoggingBroadcaster()
    futures = {}
    for i in range(entry['games']):
        match = store.create_match(agent.id, entry['level'])
        fut = pool.submit(run_match_job, match.id, agent.id, entry['level'], entry['credentials'],
                          store=store, broadcaster=broadcaster, max_plies=entry['max_plies'])
        futures[fut] = (i, match.id)

    rows = []
    for fut in as_completed(futures):
        i, match_id = futures[fut]
        try:
            final = fut.result()
            row = final.to_dict()
        except Exception as e:
            logging.getLogger('run').error('[%s Game %d] match %s failed: %s: %s', config_name, i + 1, match_id, type(e).__name__, e)
            row = {'id': match_id, 'status': 'errored', 'error_message': f"{type(e).__name__}: {e}"}
        row['config'] = config_name
        row['game_index'] = i
        rows.append(row)
        print(f"[{config_name} Game {i+1}] status={row.get('status')} winner={row.get('winner')} "
              f"reason={row.get('result_reason')} plies={row.get('moves_count')}")
    with open(os.path.join(entry['out_dir'], 'results.jsonl'), 'a', encoding='utf-8') as f:
        for row in rows:
            f.write(json.dumps(row) + '\n')
    return rows


def main():
    ap = argparse.ArgumentParser(description='Play many matches by sweeping over JSON config files.')
    ap.add_argument('--configs', required=True, help='Comma-separated list of config paths, directories, or glob patterns (e.g., configs/*.json)')
    ap.add_argument('--jobs', type=int, default=0, help='Max concurrent matches (0 => PROMPTCHESS_MAX_CONCURRENCY)')
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO,
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    log = logging.getLogger('run')

    files = collect_config_files(args.configs)
    if not files:
        log.error('No config files found for spec: %s', args.configs)
        sys.exit(1)

    grand: List[Dict] = []
    t0 = time.time()
    with ThreadPoolExecutor(max_workers=args.jobs or SETTINGS.max_concurrency) as pool:
        for path in files:
            try:
                d = load_json(path)
                entry = build_entry_from_dict(d)
            except (OSError, ValueError) as e:
                log.error('Skipping %s: %s', path, e)
                continue
            logging.getLogger().setLevel(_parse_log_level(d.get('log_level')))
            os.makedirs(entry['out_dir'], exist_ok=True)
            grand.extend(run_config(entry, os.path.basename(path), pool))

    completed = [r for r in grand if r.get('status') == 'completed']
    winners = [r.get('winner') for r in completed]
    avg_plies = statistics.mean([r.get('moves_count', 0) for r in completed]) if completed else 0
    avg_tokens = statistics.mean([r.get('total_tokens_used', 0) for r in completed]) if completed else 0
    latencies = [r['average_move_time_ms'] for r in completed if r.get('average_move_time_ms') is not None]
    avg_latency = statistics.mean(latencies) if latencies else 0

    print('\nGrand summary:')
    print(f"Configs: {len(files)}  Matches: {len(grand)}  Errored: {len(grand) - len(completed)}")
    print(f"Agent W={winners.count('agent')} D={winners.count('draw')} L={winners.count('engine')}")
    print(f"Avg plies: {avg_plies:.1f}")
    print(f"Avg tokens: {avg_tokens:.1f}")
    print(f"Avg agent latency (ms): {avg_latency:.1f}")
    print(f"Wall time: {time.time()-t0:.1f}s")


if __name__ == '__main__':
    main()
