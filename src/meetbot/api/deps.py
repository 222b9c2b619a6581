"""FastAPI dependencies for authentication.

The management API trusts Bearer JWTs issued by the platform auth
service; the ``sub`` claim is the user id that scopes every query.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from src.meetbot.core.security import verify_token


async def get_current_user_id(request: Request) -> str:
    """Extract and validate the current user id from a Bearer JWT.

    Raises:
        HTTPException(401): If no valid token is provided.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = verify_token(auth_header[7:], token_type="access")
    return str(payload["sub"])


# Alias for cleaner endpoint signatures
require_user = Depends(get_current_user_id)
