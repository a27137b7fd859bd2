"""Address text normalisation helpers."""
from __future__ import annotations

import re
from typing import Iterable, Optional

# City and house markers, matched as whole tokens.
_ADMIN_MARKERS_RE = re.compile(
    r"(?<!\w)(?:(?:г|гор|д)\.|(?:город|дом)(?!\w))",
    re.IGNORECASE,
)
_STREET_TYPES_RE = re.compile(
    r"(?<!\w)(?:улица|проспект|переулок|площадь|шоссе|бульвар|набережная|проезд"
    r"|ул\.|пр-т|пер\.)(?!\w)",
    re.IGNORECASE,
)
_SEPARATORS_RE = re.compile(r"[,;]+")
_WHITESPACE_RE = re.compile(r"\s+")


def _collapse(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def normalize_address(raw: Optional[str]) -> str:
    """Strip administrative noise so the forward geocoder matches better.

    Never raises; an empty result means no address was supplied.
    """
    if not raw:
        return ""
    text = _ADMIN_MARKERS_RE.sub(" ", raw)
    text = _SEPARATORS_RE.sub(" ", text)
    return _collapse(text)


def strip_street_types(road: Optional[str]) -> str:
    """Remove street-type words ("улица", "проспект", ...) from a road name."""
    if not road:
        return ""
    return _collapse(_STREET_TYPES_RE.sub(" ", road))


def compose_display_address(parts: Iterable[Optional[str]]) -> str:
    return " ".join(part.strip() for part in parts if part and part.strip())
