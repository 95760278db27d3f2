"""
Candidate sources.

Responsibilities:
- Define the boundary interfaces the core consumes (catalog, provider,
  preferences, session cache, device position).
- Query the internal catalog (pandas-backed) by text or by tags near a point.
- Query the third-party place service within a daily call budget and
  backfill incomplete addresses.
"""
