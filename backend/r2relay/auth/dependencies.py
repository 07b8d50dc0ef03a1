"""
FastAPI dependencies for access control.
Provides require_admin_secret, the shared-secret gate of the admin panel
and the upload API.
"""
import secrets
from typing import Optional

from fastapi import HTTPException, Query, status

from r2relay.config import settings


def check_admin_secret(candidate: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare a supplied secret with the configured one in constant time.

    An unset secret never matches, so an unconfigured deployment is closed.
    """
    if not expected or candidate is None:
        return False
    return secrets.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))


async def require_admin_secret(
    password: Optional[str] = Query(None, alias="pass")
) -> str:
    """
    FastAPI dependency that checks the `pass` query parameter.

    Runs before the request body is used, so a refused request has no
    side effects.

    Raises:
        HTTPException 403: If the secret is missing or wrong
    """
    if not check_admin_secret(password, settings.admin_password):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized Access"
        )
    return password
