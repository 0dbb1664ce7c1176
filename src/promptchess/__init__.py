"""
PromptChess package.

Components:
- referee: rules adapter over python-chess (positions, legality, results, PGN)
- engine_process: one Stockfish subprocess per match run (UCI, strength levels, timeouts)
- move_generator/prompting/move_validator/llm_client: prompt → completion → parse → validate loop
- orchestrator: the alternating agent/engine match loop with persistence and broadcasts
- store/broadcast: persistence and live-update collaborators
- jobs: invocation boundary and outer retry policy
"""
# Package exports are intentionally minimal; import modules directly as needed.
