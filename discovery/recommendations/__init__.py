"""
Discovery core.

Responsibilities:
- Parse free text, tag filters and sort mode into a structured query.
- Resolve the per-request user context (tag affinities, location, radius).
- Fan out to the internal catalog and the external place provider,
  deduplicate, and bound results to the search radius.
- Rank candidates deterministically and explain why each was surfaced.
- Cache discovery results per session and rotate suggestions so repeat
  visits see fresh places.
"""
