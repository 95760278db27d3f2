"""
Request identity.

Responsibilities:
- Resolve the user and discovery session bound to the cookie session.
"""
