"""Simple JWT authentication helpers."""
from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

import jwt
from fastapi import Depends, Header, HTTPException, status

from src.core.config import settings


def require_auth(authorization: str = Header(...)) -> Dict[str, Any]:
    """Validate a bearer token and return the caller's identity.

    Tokens carry ``sub`` (member id), an optional ``org_id`` and an optional
    ``is_admin`` flag for platform administrators.
    """

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )

    token = authorization.split(" ", 1)[1].strip()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALG],
        )
    except jwt.InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc

    member_id = payload.get("sub")
    if not member_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Subject missing in token",
        )

    org_id: Optional[UUID] = None
    if payload.get("org_id"):
        try:
            org_id = UUID(str(payload["org_id"]))
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid organization identifier",
            ) from exc

    return {
        "member_id": str(member_id),
        "org_id": org_id,
        "is_admin": bool(payload.get("is_admin", False)),
        "claims": payload,
    }


def require_platform_admin(auth: Dict[str, Any] = Depends(require_auth)) -> Dict[str, Any]:
    if not auth["is_admin"]:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Platform administrator privileges required",
        )
    return auth


def ensure_org_access(auth: Dict[str, Any], org_id: UUID) -> None:
    """Reject callers whose token is scoped to a different organization."""

    if auth["is_admin"]:
        return
    if auth["org_id"] != org_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this organization",
        )
