"""Field level normalisation helpers."""
from __future__ import annotations

from typing import Iterable, List, Optional


def split_series(text: Optional[str]) -> List[str]:
    """Split comma-separated series into trimmed, de-duplicated tokens in first-seen order."""
    seen: List[str] = []
    for part in (text or "").split(","):
        token = part.strip()
        if token and token not in seen:
            seen.append(token)
    return seen


def join_series(items: Iterable[str]) -> str:
    return ", ".join(items)
