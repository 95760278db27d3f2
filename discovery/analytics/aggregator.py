from __future__ import annotations

from collections import Counter
from typing import Any


def _rate(part: int, total: int) -> float:
    return round(part / total * 100, 1) if total else 0.0


def compute_analytics(events: list[dict[str, Any]]) -> dict[str, Any]:
    searches = [e for e in events if e["type"] == "search"]
    discovers = [e for e in events if e["type"] == "discover"]
    requests = searches + discovers
    completed = [e for e in requests if e.get("status") == "ok"]

    # Average response time over completed requests
    times = [e["response_time_ms"] for e in completed if "response_time_ms" in e]
    avg_time = round(sum(times) / len(times), 1) if times else 0.0

    # Top queries (free text only)
    query_counter: Counter[str] = Counter()
    for s in searches:
        query = (s.get("query") or "").strip().lower()
        if query:
            query_counter[query] += 1
    top_queries = [{"query": q, "count": c} for q, c in query_counter.most_common(10)]

    # Top tag filters
    tag_counter: Counter[str] = Counter()
    for s in searches:
        for t in s.get("tags", []) or []:
            tag_counter[t] += 1
    top_tags = [{"name": n, "count": c} for n, c in tag_counter.most_common(10)]

    sort_usage = dict(Counter(s.get("sort", "relevance") for s in searches))

    # Cache stats
    cache_hits = sum(1 for e in completed if e.get("cache_hit"))

    # Source health
    failure_counter: Counter[str] = Counter()
    for e in requests:
        for source in e.get("failed_sources", []) or []:
            failure_counter[source] += 1

    statuses = Counter(e.get("status", "ok") for e in requests)
    located = sum(1 for e in completed if e.get("location_resolved"))

    return {
        "total_searches": len(searches),
        "total_discovers": len(discovers),
        "avg_response_time_ms": avg_time,
        "top_queries": top_queries,
        "top_tags": top_tags,
        "sort_usage": sort_usage,
        "location_resolved_rate": _rate(located, len(completed)),
        "cache_stats": {
            "hits": cache_hits,
            "misses": len(completed) - cache_hits,
            "hit_rate": _rate(cache_hits, len(completed)),
        },
        "source_failures": dict(failure_counter),
        "status_counts": {
            "ok": statuses.get("ok", 0),
            "unavailable": statuses.get("unavailable", 0),
            "superseded": statuses.get("superseded", 0),
        },
    }
