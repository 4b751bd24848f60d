"""Client for the external OAuth identity provider (GoTrue-compatible REST API)."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

import httpx

from .errors import IdentityProviderError
from .models import AuthSession, Identity

logger = logging.getLogger("postboard.identity")

SUPPORTED_PROVIDERS = frozenset({"google"})


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return default


def _code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


@dataclass(frozen=True)
class OAuthStart:
    """Where to send the browser to begin an OAuth sign-in."""

    provider: str
    url: str
    code_verifier: str


class IdentityProvider:
    """Session-cookie based identity lookups against the auth server."""

    def __init__(
        self,
        auth_url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cleaned = (auth_url or "").strip().rstrip("/")
        if not cleaned:
            raise ValueError("Identity provider URL must not be empty")
        if not (anon_key or "").strip():
            raise ValueError("Identity provider API key must not be empty")
        self._auth_url = cleaned
        self._anon_key = anon_key.strip()
        self._timeout = timeout
        self._transport = transport

    def _endpoint(self, path: str) -> str:
        return f"{self._auth_url}/auth/v1{path}"

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        headers = {"apikey": self._anon_key, "Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    async def _call(
        self,
        method: str,
        path: str,
        *,
        access_token: Optional[str] = None,
        params: Optional[Mapping[str, str]] = None,
        json: Optional[Mapping[str, Any]] = None,
    ) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    self._endpoint(path),
                    params=params,
                    json=json,
                    headers=self._headers(access_token),
                )
        except httpx.RequestError as exc:
            raise IdentityProviderError(f"Failed to contact identity provider: {exc}") from exc

        if response.status_code >= 400:
            try:
                parsed = response.json()
            except ValueError:
                parsed = None
            message = _extract_error_message(
                parsed, f"Identity provider request failed with status {response.status_code}"
            )
            raise IdentityProviderError(message, status_code=response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise IdentityProviderError("Identity provider returned an invalid response") from exc
        if not isinstance(data, dict):
            raise IdentityProviderError("Identity provider returned an unexpected response payload")
        return data

    async def get_user(self, access_token: str) -> Identity:
        response = await self._call("GET", "/user", access_token=access_token)
        try:
            return Identity.from_dict(self._json(response))
        except ValueError as exc:
            raise IdentityProviderError(str(exc)) from exc

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        response = await self._call(
            "POST",
            "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        try:
            return AuthSession.from_dict(self._json(response))
        except ValueError as exc:
            raise IdentityProviderError(str(exc)) from exc

    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> AuthSession:
        response = await self._call(
            "POST",
            "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
        )
        try:
            return AuthSession.from_dict(self._json(response))
        except ValueError as exc:
            raise IdentityProviderError(str(exc)) from exc

    async def sign_out(self, access_token: str) -> None:
        await self._call("POST", "/logout", access_token=access_token)

    def sign_in_with_oauth(self, provider: str, redirect_to: str) -> OAuthStart:
        """Build the authorize URL for *provider* using a fresh PKCE verifier."""
        if provider not in SUPPORTED_PROVIDERS:
            raise IdentityProviderError(f"Unsupported provider: {provider}")
        if not redirect_to:
            raise IdentityProviderError("An OAuth redirect target is required")

        verifier = secrets.token_urlsafe(48)
        query = urlencode(
            {
                "provider": provider,
                "redirect_to": redirect_to,
                "code_challenge": _code_challenge(verifier),
                "code_challenge_method": "s256",
            }
        )
        return OAuthStart(
            provider=provider,
            url=f"{self._endpoint('/authorize')}?{query}",
            code_verifier=verifier,
        )


__all__ = ["IdentityProvider", "OAuthStart", "SUPPORTED_PROVIDERS"]
