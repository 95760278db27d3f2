from __future__ import annotations

from typing import Iterable

from .models import ParsedQuery, SortMode


def parse(
    raw_text: str | None,
    active_tags: Iterable[str] | None = None,
    sort_mode: str | SortMode = SortMode.relevance,
) -> ParsedQuery:
    """Turn free text plus active tag filters into a ``ParsedQuery``.

    Never fails: empty text gives empty tokens (the discovery path) and an
    unknown sort mode falls back to relevance.
    """
    text = raw_text or ""
    tokens = [t for t in text.lower().split() if t]

    try:
        mode = SortMode(sort_mode)
    except ValueError:
        mode = SortMode.relevance

    return ParsedQuery(
        raw_text=text,
        tokens=tokens,
        tag_filters=set(active_tags or ()),
        sort_mode=mode,
    )
