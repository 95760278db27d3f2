from __future__ import annotations

from fastapi import HTTPException, Request


def require_user(request: Request) -> str:
    """Raise 401 if no user is bound to the session."""
    user_id = request.session.get("user_id")
    if not user_id:
        raise HTTPException(status_code=401, detail="No active session")
    return user_id


def require_session_id(request: Request) -> str:
    """Raise 401 if the session has no discovery session id."""
    session_id = request.session.get("sid")
    if not session_id:
        raise HTTPException(status_code=401, detail="No active session")
    return session_id
