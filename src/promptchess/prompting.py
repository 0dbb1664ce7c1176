"""
Prompt builders and config for agent move requests using a modular template.

Callers supply a template string with placeholders that are substituted per turn.
The first attempt ends with the normal instruction suffix; retries append a correction
telling the model its previous reply was unusable.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Sequence

DEFAULT_TEMPLATE = """You are a chess-playing AI agent named "{AGENT_NAME}".

Your personality and strategy: {PERSONA}

Current Position (FEN): {FEN}

{MOVE_HISTORY}

Game Context:
- Your color: {SIDE_TO_MOVE}
- Move number: {MOVE_NUMBER}
- Legal moves: {LEGAL_MOVES}
"""

DEFAULT_INSTRUCTIONS = """Analyze the position and respond with your next move.
Format: MOVE: [your move in standard algebraic notation]

Example responses:
- "I'll control the center with e4. MOVE: e4"
- "Developing the knight is best. MOVE: Nf3"

Now choose your move:"""

RETRY_INSTRUCTIONS = """IMPORTANT: Your previous response was invalid{REASON}.
You MUST pick one move from the legal moves listed above.
Respond EXACTLY in this format on its own line:
MOVE: <move>

Attempt {ATTEMPT} of {MAX_ATTEMPTS}."""

# Joins prompts/responses of consecutive attempts in the persisted move record
RETRY_SEPARATOR = "\n\n--- retry {ATTEMPT} ---\n\n"


@dataclass
class PromptConfig:
    """Configuration for shaping move prompts using a custom template."""

    template: str = DEFAULT_TEMPLATE
    instructions: str = DEFAULT_INSTRUCTIONS
    retry_instructions: str = RETRY_INSTRUCTIONS


def render_custom_prompt(template: str, values: Dict[str, str]) -> str:
    """Replace known placeholders in the template. Unknown tokens are left intact."""
    rendered = template or ""
    for key, val in values.items():
        rendered = rendered.replace(f"{{{key}}}", str(val))
    return rendered


def format_move_history(sans: Sequence[str]) -> str:
    """Render SAN plies as paired lines: '1. e4 e5', '2. Nf3'."""
    if not sans:
        return "Move History: (game start)"
    lines = ["Move History:"]
    for idx in range(0, len(sans), 2):
        pair = sans[idx:idx + 2]
        lines.append(f"{idx // 2 + 1}. {' '.join(pair)}")
    return "\n".join(lines)


def fullmove_number(fen: str, history: Sequence[str] = ()) -> int:
    """Fullmove counter of the FEN; falls back to counting plies when the field is missing."""
    fields = (fen or "").split()
    if len(fields) >= 6 and fields[5].isdigit():
        return int(fields[5])
    return len(history) // 2 + 1


def retry_separator(attempt: int) -> str:
    return render_custom_prompt(RETRY_SEPARATOR, {"ATTEMPT": str(attempt)})


def build_move_prompt(
    agent_name: str,
    persona: str,
    fen: str,
    history: Sequence[str],
    legal_moves: Iterable[str],
    side_to_move: str = "White",
    attempt: int = 1,
    max_attempts: int = 3,
    failure_reason: str | None = None,
    cfg: PromptConfig | None = None,
) -> str:
    cfg = cfg or PromptConfig()
    values = {
        "AGENT_NAME": agent_name,
        "PERSONA": persona,
        "FEN": fen,
        "MOVE_HISTORY": format_move_history(history),
        "SIDE_TO_MOVE": side_to_move,
        "MOVE_NUMBER": str(fullmove_number(fen, history)),
        "LEGAL_MOVES": ", ".join(sorted(legal_moves)),
    }
    body = render_custom_prompt(cfg.template, values).rstrip()
    if attempt <= 1:
        return f"{body}\n\n{cfg.instructions}"
    retry = render_custom_prompt(cfg.retry_instructions, {
        "REASON": f" ({failure_reason})" if failure_reason else "",
        "ATTEMPT": str(attempt),
        "MAX_ATTEMPTS": str(max_attempts),
    })
    return f"{body}\n\n{cfg.instructions}\n\n{retry}"
