"""
JWT authentication utilities for the web API.

Sessions are issued by the external profile service; this API only
verifies them. The token subject is the holder_id.

Tokens are HS256-signed with JWT_SECRET and arrive either in the HttpOnly
"session" cookie or as an Authorization: Bearer header.
"""

import os

import jwt
from fastapi import Depends, HTTPException, Request

JWT_SECRET = os.environ.get("JWT_SECRET")
JWT_ALGORITHM = "HS256"


def verify_jwt(token: str) -> dict | None:
    """
    Verify and decode a JWT token.

    Returns:
        Decoded payload dict if valid, None if invalid
    """
    if not JWT_SECRET:
        raise ValueError("JWT_SECRET environment variable not set")

    try:
        return jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.InvalidTokenError:
        return None


def _token_from_request(request: Request) -> str | None:
    token = request.cookies.get("session")
    if token:
        return token
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):]
    return None


async def get_current_user(request: Request) -> dict:
    """
    FastAPI dependency to get the current authenticated session.

    Accepts the session cookie or an Authorization: Bearer header.

    Raises:
        HTTPException: 401 if not authenticated or invalid token
    """
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    payload = verify_jwt(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return payload


async def get_current_holder(user: dict = Depends(get_current_user)) -> dict:
    """
    FastAPI dependency that loads the holder row for the session.

    Holders only ever reach their own rows through this dependency.

    Raises:
        HTTPException: 401 for a malformed subject, 404 for an unknown holder
    """
    from vigil.database import get_connection
    from vigil.queries.holders import get_holder

    try:
        holder_id = int(user["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid session subject")

    async with get_connection() as conn:
        holder = await get_holder(conn, holder_id)

    if not holder:
        raise HTTPException(status_code=404, detail="Holder not found")
    return holder


async def require_admin(holder: dict = Depends(get_current_holder)) -> dict:
    """
    FastAPI dependency that requires an admin holder.

    Raises:
        HTTPException: 403 if the holder is not an admin
    """
    if not holder.get("is_admin"):
        raise HTTPException(status_code=403, detail="Admin access required")
    return holder
