"""Resolve the signed-in user from identity provider session cookies."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from fastapi import Request
from starlette.responses import Response

from .errors import IdentityProviderError
from .identity import IdentityProvider
from .models import AuthSession, Identity

logger = logging.getLogger("postboard.sessions")

ACCESS_TOKEN_COOKIE = "sb-access-token"
REFRESH_TOKEN_COOKIE = "sb-refresh-token"
CODE_VERIFIER_COOKIE = "sb-code-verifier"

REFRESH_TOKEN_MAX_AGE = 60 * 60 * 24 * 7
CODE_VERIFIER_MAX_AGE = 60 * 10


@dataclass
class _CookieMutation:
    name: str
    value: Optional[str]
    max_age: Optional[int] = None


class PendingCookies:
    """Cookie changes that must reach whichever response the handler returns."""

    def __init__(self, *, secure: bool = True) -> None:
        self._secure = secure
        self._mutations: List[_CookieMutation] = []

    def __len__(self) -> int:
        return len(self._mutations)

    def set(self, name: str, value: str, *, max_age: Optional[int] = None) -> None:
        self._mutations.append(_CookieMutation(name=name, value=value, max_age=max_age))

    def delete(self, name: str) -> None:
        self._mutations.append(_CookieMutation(name=name, value=None))

    def store_session(self, session: AuthSession) -> None:
        self.set(ACCESS_TOKEN_COOKIE, session.access_token, max_age=session.expires_in)
        self.set(REFRESH_TOKEN_COOKIE, session.refresh_token, max_age=REFRESH_TOKEN_MAX_AGE)

    def clear_session(self) -> None:
        self.delete(ACCESS_TOKEN_COOKIE)
        self.delete(REFRESH_TOKEN_COOKIE)

    def apply(self, response: Response) -> Response:
        for mutation in self._mutations:
            if mutation.value is None:
                response.delete_cookie(mutation.name, path="/")
                continue
            response.set_cookie(
                mutation.name,
                mutation.value,
                max_age=mutation.max_age,
                secure=self._secure,
                httponly=True,
                samesite="lax",
                path="/",
            )
        return response


@dataclass
class ResolvedSession:
    identity: Optional[Identity]
    access_token: Optional[str] = None
    cookies: PendingCookies = field(default_factory=PendingCookies)


def _is_rejection(exc: IdentityProviderError) -> bool:
    return exc.status_code is not None and 400 <= exc.status_code < 500


class SessionResolver:
    """Look up the current identity, refreshing expired access tokens."""

    def __init__(self, provider: IdentityProvider, *, secure_cookies: bool = True) -> None:
        self._provider = provider
        self._secure_cookies = secure_cookies

    @property
    def provider(self) -> IdentityProvider:
        return self._provider

    def pending_cookies(self) -> PendingCookies:
        return PendingCookies(secure=self._secure_cookies)

    async def resolve(self, request: Request) -> ResolvedSession:
        cookies = self.pending_cookies()
        access_token = request.cookies.get(ACCESS_TOKEN_COOKIE)
        refresh_token = request.cookies.get(REFRESH_TOKEN_COOKIE)
        stale = False

        if access_token:
            try:
                identity = await self._provider.get_user(access_token)
            except IdentityProviderError as exc:
                logger.warning("Identity provider did not accept the access token: %s", exc.message)
                stale = _is_rejection(exc)
            else:
                return ResolvedSession(identity=identity, access_token=access_token, cookies=cookies)

        if refresh_token:
            try:
                session = await self._provider.refresh_session(refresh_token)
            except IdentityProviderError as exc:
                logger.warning("Failed to refresh session: %s", exc.message)
                if _is_rejection(exc):
                    cookies.clear_session()
                return ResolvedSession(identity=None, cookies=cookies)
            cookies.store_session(session)
            return ResolvedSession(
                identity=session.identity,
                access_token=session.access_token,
                cookies=cookies,
            )

        if stale:
            cookies.clear_session()
        return ResolvedSession(identity=None, cookies=cookies)


__all__ = [
    "ACCESS_TOKEN_COOKIE",
    "CODE_VERIFIER_COOKIE",
    "CODE_VERIFIER_MAX_AGE",
    "REFRESH_TOKEN_COOKIE",
    "PendingCookies",
    "ResolvedSession",
    "SessionResolver",
]
