"""
Prompt Helpers for persona responses

Pure functions for turning retrieved messages into prompt text.
These helpers ensure:
1. No empty or whitespace-only exemplars in prompts
2. Consistent numbered formatting
3. Deterministic output (same input always produces same output)
"""

from typing import Iterable, List, Optional

STYLE_ASPECTS = [
    "FACTUAL ACCURACY - Never contradict facts about their life mentioned in the messages",
    "Their EXACT vocabulary and slang",
    "Their specific emoji usage (if any)",
    "Their sentence structure and length",
    "Their punctuation style",
    "How formal/informal they are",
    "Topics they frequently discuss",
    "Personal details they've shared (family, work, hobbies, etc.)",
    "Their unique expressions and catchphrases",
]


def clean_message(content: Optional[str], max_chars: int = 1000) -> Optional[str]:
    """Strip a message for use as an exemplar. Returns None if nothing remains."""
    if not content or not isinstance(content, str):
        return None

    # Null bytes and stray carriage returns break some tokenizers
    cleaned = content.replace("\x00", "").replace("\r", "").strip()
    if not cleaned:
        return None

    if len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars].rstrip() + "..."
    return cleaned


def format_exemplars(contents: Iterable[Optional[str]]) -> str:
    """Render messages as numbered [Message n] blocks, skipping empty ones."""
    blocks: List[str] = []
    for content in contents:
        cleaned = clean_message(content)
        if cleaned is None:
            continue
        blocks.append(f"[Message {len(blocks) + 1}]:\n{cleaned}")
    return "\n\n".join(blocks)


def format_numbered_list(items: Iterable[str]) -> str:
    return "\n".join(f"{i}. {item}" for i, item in enumerate(items, start=1))
