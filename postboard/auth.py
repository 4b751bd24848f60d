"""Request-scoped authorization and sign-in helpers for the page handlers."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request
from starlette.responses import Response

from .backend import BackendClient
from .errors import AuthenticationAbsent, AuthorizationMismatch, IdentityProviderError
from .identity import IdentityProvider
from .models import Identity
from .sessions import (
    CODE_VERIFIER_COOKIE,
    CODE_VERIFIER_MAX_AGE,
    PendingCookies,
    ResolvedSession,
    SessionResolver,
)

logger = logging.getLogger("postboard.auth")


class Policy(enum.Enum):
    """Authorization rule a route applies before touching the backend."""

    PUBLIC_READ = "public-read"
    SELF_ONLY = "self-only"
    NONE = "none"


@dataclass
class RequestContext:
    """Everything a page handler needs for one request."""

    request: Request
    session: ResolvedSession
    backend: BackendClient
    provider: IdentityProvider

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.identity

    @property
    def cookies(self) -> PendingCookies:
        return self.session.cookies

    def finish(self, response: Response) -> Response:
        """Attach the pending session cookies to *response*."""
        return self.cookies.apply(response)


def is_owner(identity: Optional[Identity], subject_id: str) -> bool:
    return identity is not None and identity.id == subject_id


def authorize(ctx: RequestContext, policy: Policy, subject_id: Optional[str] = None) -> Optional[Identity]:
    """Apply *policy* for *subject_id*, raising before any backend call is made."""

    identity = ctx.identity
    if policy is not Policy.SELF_ONLY:
        return identity

    if identity is None:
        logger.warning("Anonymous request rejected for %s", ctx.request.url.path)
        raise AuthenticationAbsent("Unauthorized")
    if identity.id != subject_id:
        logger.warning(
            "User %s is not authorised to act on user %s", identity.id, subject_id
        )
        raise AuthorizationMismatch("Unauthorized")
    return identity


def posts_query(identity: Optional[Identity]) -> Dict[str, str]:
    """Query parameters restricting a posts listing to what *identity* may see."""
    if identity is None:
        return {"publicOnly": "true"}
    return {"currentUserId": identity.id}


@dataclass(frozen=True)
class AuthResult:
    ok: bool
    url: Optional[str] = None
    error: str = ""


async def get_user(request: Request, resolver: SessionResolver) -> Optional[Identity]:
    session = await resolver.resolve(request)
    return session.identity


async def is_user_logged_in(request: Request, resolver: SessionResolver) -> bool:
    return await get_user(request, resolver) is not None


def sign_in_with_google(ctx: RequestContext, redirect_to: str) -> AuthResult:
    """Start the Google OAuth flow, storing the PKCE verifier on the context."""
    try:
        start = ctx.provider.sign_in_with_oauth("google", redirect_to)
    except IdentityProviderError as exc:
        return AuthResult(ok=False, error=exc.message)
    ctx.cookies.set(CODE_VERIFIER_COOKIE, start.code_verifier, max_age=CODE_VERIFIER_MAX_AGE)
    return AuthResult(ok=True, url=start.url)


async def sign_out(ctx: RequestContext, redirect_to: str = "/") -> AuthResult:
    error = ""
    if ctx.session.access_token:
        try:
            await ctx.provider.sign_out(ctx.session.access_token)
        except IdentityProviderError as exc:
            logger.warning("Identity provider sign-out failed: %s", exc.message)
            error = exc.message
    if ctx.identity is not None:
        logger.info("User %s signed out", ctx.identity.id)
    ctx.cookies.clear_session()
    return AuthResult(ok=not error, url=redirect_to, error=error)


__all__ = [
    "AuthResult",
    "Policy",
    "RequestContext",
    "authorize",
    "get_user",
    "is_owner",
    "is_user_logged_in",
    "posts_query",
    "sign_in_with_google",
    "sign_out",
]
