"""
Shared-secret authentication for sync triggers.

The cron tick and the manual per-connection trigger are called by
schedulers and operator tooling, not by logged-in users, so they carry
``Authorization: Bearer <SYNC_SECRET>`` instead of a session.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from ..config import settings

logger = logging.getLogger(__name__)


def verify_shared_secret(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison; an unset secret never matches"""
    if not expected or not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def require_sync_secret(authorization: Optional[str] = Header(default=None)) -> None:
    """FastAPI dependency guarding the sync endpoints"""
    if not settings.sync_secret:
        logger.error("SYNC_SECRET is not configured, rejecting sync trigger")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync trigger is not configured"
        )

    token = None
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]

    if not verify_shared_secret(token, settings.sync_secret):
        logger.warning("Rejected sync trigger with invalid secret")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid sync secret"
        )
