"""
Storefront Inventory - Request dependencies (authenticated identity)
"""
from typing import Any
from fastapi import Depends, HTTPException, Request, status


def current_user(request: Request) -> dict[str, Any]:
    user = getattr(request.state, "user", None)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


def current_user_id(user: dict[str, Any] = Depends(current_user)) -> str:
    return user["sub"]


def require_admin(user: dict[str, Any] = Depends(current_user)) -> dict[str, Any]:
    if not user.get("is_admin"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return user
