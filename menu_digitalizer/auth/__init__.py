from menu_digitalizer.auth.client import AuthSession, AuthUser, HostedAuthClient
from menu_digitalizer.auth.dependencies import (
    get_auth_client,
    get_current_user,
    get_optional_user,
)

__all__ = [
    "AuthSession",
    "AuthUser",
    "HostedAuthClient",
    "get_auth_client",
    "get_current_user",
    "get_optional_user",
]
