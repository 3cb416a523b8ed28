from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status

from menu_digitalizer.auth.client import AuthUser, HostedAuthClient
from menu_digitalizer.core.errors import AuthError

_client: HostedAuthClient | None = None


def get_auth_client() -> HostedAuthClient:
    global _client
    if _client is None:
        _client = HostedAuthClient()
    return _client


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_optional_user(
    request: Request,
    client: HostedAuthClient = Depends(get_auth_client),
) -> AuthUser | None:
    token = _bearer_token(request)
    if token is None:
        return None
    try:
        return client.get_user(token)
    except AuthError:
        return None


def get_current_user(user: AuthUser | None = Depends(get_optional_user)) -> AuthUser:
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
