from __future__ import annotations

from pathlib import Path

PROMPT_DIR = Path(__file__).resolve().parent


def available_prompts() -> list[str]:
    return sorted(path.name for path in PROMPT_DIR.glob("*.txt"))


def load_prompt(filename: str) -> str:
    """Load a persona prompt shipped with the codebase."""

    path = PROMPT_DIR / filename
    if path.parent != PROMPT_DIR or not path.exists():
        raise RuntimeError(f"Prompt file not found: {filename} (available: {', '.join(available_prompts())})")
    return path.read_text(encoding="utf-8").strip()
