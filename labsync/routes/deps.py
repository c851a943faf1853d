"""Request-scoped dependencies shared by the storage routes."""
from typing import Optional

from fastapi import Header

ANONYMOUS_USER = "anonymous"


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Owner key for stored entries.

    Sign-in lives in the surrounding application, which forwards the user id
    in ``X-User-Id``; tests override this dependency.
    """
    return (x_user_id or "").strip() or ANONYMOUS_USER
