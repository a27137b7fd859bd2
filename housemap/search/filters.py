"""Directory search over cached building records."""
from __future__ import annotations

import math
import re
from typing import Iterable, List, Optional, Tuple

from housemap.records.models import BuildingRecord

SEARCH_FIELDS = ("address", "year", "series")

_INT_RE = re.compile(r"^\s*(\d+)")

Span = Tuple[float, float]


def _leading_int(text: str) -> Optional[int]:
    match = _INT_RE.match(text)
    return int(match.group(1)) if match else None


def parse_year_query(term: str) -> Optional[Span]:
    """`1975` → (1975, 1975); `1970-1980`, `-1980`, `1970-` → open or closed range."""
    term = term.strip()
    if "-" in term:
        low_text, _, high_text = term.partition("-")
        low = _leading_int(low_text)
        high = _leading_int(high_text)
        if low is None and high is None:
            return None
        return (
            float(low) if low is not None else -math.inf,
            float(high) if high is not None else math.inf,
        )
    year = _leading_int(term)
    if year is None:
        return None
    return (float(year), float(year))


def record_years(year: str) -> Optional[Span]:
    """Span covered by a record's stored year text."""
    low_text, _, high_text = year.partition("-")
    low = _leading_int(low_text)
    if low is None:
        return None
    high = _leading_int(high_text) if high_text else None
    return (float(low), float(high if high is not None else low))


def _matches_year(record: BuildingRecord, wanted: Span) -> bool:
    span = record_years(record.year)
    if span is None:
        return False
    return span[0] <= wanted[1] and wanted[0] <= span[1]


def _matches_series(record: BuildingRecord, terms: List[str]) -> bool:
    series = [item.lower() for item in record.building_series]
    return any(term in item for term in terms for item in series)


def has_term(term: Optional[str]) -> bool:
    stripped = (term or "").strip()
    return stripped not in ("", "-")


def search_records(
    records: Iterable[BuildingRecord],
    term: Optional[str],
    *,
    by: str = "address",
    city: Optional[str] = None,
    search_all_map: bool = False,
) -> Optional[List[BuildingRecord]]:
    """Filter records; None means "no active search" so nothing is highlighted."""
    if by not in SEARCH_FIELDS:
        raise ValueError(f"Unknown search field: {by}")
    with_term = has_term(term)
    city_filter = (city or "").strip().lower()
    with_city = not search_all_map and bool(city_filter)
    if not with_term and not with_city:
        return None

    needle = (term or "").strip().lower()
    year_span = parse_year_query(needle) if with_term and by == "year" else None
    series_terms = [part.strip() for part in needle.split(",") if part.strip()] if by == "series" else []

    results: List[BuildingRecord] = []
    for record in records:
        address = record.address.lower()
        if with_city and city_filter not in address:
            continue
        if not with_term:
            results.append(record)
            continue
        if by == "address":
            matched = needle in address
        elif by == "year":
            matched = year_span is not None and _matches_year(record, year_span)
        else:
            matched = _matches_series(record, series_terms)
        if matched:
            results.append(record)
    return results
