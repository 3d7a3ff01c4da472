# api_server/auth.py
import os
from typing import Optional

from fastapi import Header, HTTPException, status

API_KEY_HEADER = "X-API-Key"


def get_api_key() -> Optional[str]:
    """API key the cron caller must present, from FLOW_API_KEY."""
    return os.getenv("FLOW_API_KEY")


def verify_api_key(
    api_key: Optional[str] = Header(None, alias=API_KEY_HEADER),
    authorization: Optional[str] = Header(None),
) -> str:
    """
    Verify the caller's key, sent either as X-API-Key or as a Bearer token
    (the form hosted cron services use).

    Raises HTTPException if key is missing or invalid.
    """
    expected_key = get_api_key()

    if not expected_key:
        # No key configured: development mode
        return ""

    if not api_key and authorization and authorization.lower().startswith("bearer "):
        api_key = authorization[len("bearer "):].strip()

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {API_KEY_HEADER} header or bearer token",
        )

    if api_key != expected_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key",
        )

    return api_key
