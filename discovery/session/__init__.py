"""
Per-session state.

Responsibilities:
- Hold the session key/value store backing the cache and rotation set.
- Hand out cancellation tokens so a newer request supersedes an older one.
"""
