"""
Request analytics.

Responsibilities:
- Record one event per search or discover call.
- Aggregate events into usage, cache and source-health summaries.
"""
