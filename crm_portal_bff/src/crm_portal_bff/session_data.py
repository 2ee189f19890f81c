# src/crm_portal_bff/session_data.py

import enum
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from .models import User


class StorageTier(str, enum.Enum):
    PERSISTENT = "persistent"  # survives a restart; "remember me"
    EPHEMERAL = "ephemeral"    # gone when the browser session ends


class SessionState(str, enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    VERIFICATION_PENDING = "verification_pending"
    AUTHENTICATED = "authenticated"
    REFRESH_PENDING = "refresh_pending"


class SessionData(BaseModel):
    """
    The one authenticated identity held for a browser session.
    Only an opaque session ID is stored in the browser cookie.
    """
    access_token: str
    refresh_token: str
    expires_at: datetime
    storage_tier: StorageTier
    user: Optional[User] = None

    def seconds_remaining(self, now: float) -> float:
        return self.expires_at.timestamp() - now

    def is_expired(self, now: float) -> bool:
        return self.seconds_remaining(now) <= 0


def expires_at_from_millis(millis: int) -> datetime:
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
