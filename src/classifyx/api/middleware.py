"""Middleware: API key authentication for the classification routes.

The health route stays open so that orchestrators can probe it without
credentials; it reports whether a key is required instead.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from classifyx.config import Settings

_bearer_scheme = HTTPBearer(auto_error=False)


def auth_enabled(settings: Settings) -> bool:
    """Return True when CLASSIFYX_API_KEY is configured (an empty value disables auth)."""
    return bool(settings.api_key)


async def verify_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Require 'Authorization: Bearer <key>' when an API key is configured."""
    settings: Settings = request.app.state.settings
    if not auth_enabled(settings):
        return

    presented = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(presented.encode(), settings.api_key.encode()):  # type: ignore[union-attr]
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
