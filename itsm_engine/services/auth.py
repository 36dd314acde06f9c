"""
ITSM Engine Session Guard

Admin-only operations take an explicit SessionContext. Nothing reads
the current user from ambient state.
"""

from datetime import datetime
from typing import Optional

from ..errors import PermissionDeniedError, SessionExpiredError
from ..models.ticket import SessionContext


def require_admin(
    session: SessionContext,
    now: Optional[datetime] = None,
    action: str = "perform this action",
) -> None:
    """Raise unless the session is live and belongs to an admin."""
    if session.is_expired(now):
        raise SessionExpiredError("Session expired. Please sign in again.")

    if not session.is_admin:
        raise PermissionDeniedError(f"Only admins can {action}.")
