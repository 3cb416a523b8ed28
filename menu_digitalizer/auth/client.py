from __future__ import annotations

from typing import Any
from urllib.parse import urlencode

import requests
import structlog
from pydantic import BaseModel

from menu_digitalizer.core.config import settings
from menu_digitalizer.core.errors import AuthError, ExternalAPIError

logger = structlog.get_logger(__name__)

SERVICE_NAME = "auth"


class AuthUser(BaseModel):
    id: str
    email: str | None = None


class AuthSession(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    user: AuthUser


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            if body.get(key):
                return str(body[key])
    return response.text


class HostedAuthClient:
    """
    Thin client for a GoTrue-compatible hosted auth service.

    Identity is owned by the service; this client only forwards credentials
    and bearer tokens.
    """

    def __init__(
        self,
        base_url: str | None = None,
        anon_key: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.auth_url).rstrip("/")
        self.anon_key = anon_key if anon_key is not None else settings.auth_anon_key
        self.timeout = timeout or settings.auth_timeout_seconds

    def sign_up(self, email: str, password: str, redirect_to: str | None = None) -> AuthUser:
        params = {"redirect_to": redirect_to} if redirect_to else None
        body = self._request(
            "POST",
            "/auth/v1/signup",
            params=params,
            json={"email": email, "password": password},
        )
        user = body.get("user", body)
        return AuthUser.model_validate(user)

    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        body = self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return AuthSession.model_validate(body)

    def oauth_authorize_url(self, provider: str, redirect_to: str | None = None) -> str:
        query = {"provider": provider}
        if redirect_to:
            query["redirect_to"] = redirect_to
        return f"{self.base_url}/auth/v1/authorize?{urlencode(query)}"

    def get_user(self, access_token: str) -> AuthUser:
        body = self._request("GET", "/auth/v1/user", token=access_token)
        return AuthUser.model_validate(body)

    def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.anon_key:
            headers["apikey"] = self.anon_key
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = requests.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise ExternalAPIError(SERVICE_NAME, f"Auth request failed: {exc}") from exc

        if response.status_code >= 500:
            raise ExternalAPIError(
                SERVICE_NAME,
                _error_message(response),
                status_code=response.status_code,
            )
        if not response.ok:
            message = _error_message(response)
            logger.info("auth_request_rejected", path=path, status_code=response.status_code)
            raise AuthError(message, status_code=response.status_code)
        return response.json()
