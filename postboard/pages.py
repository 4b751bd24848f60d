"""Data loaders and form actions behind the HTML pages.

Every function here receives an explicit :class:`~postboard.auth.RequestContext`
and either returns data for a template, returns a redirect, or raises a
:class:`~postboard.errors.PageError`. Backend outcomes are always narrowed
before use.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from fastapi import status
from fastapi.responses import RedirectResponse

from .auth import Policy, RequestContext, authorize, is_owner, posts_query, sign_in_with_google
from .errors import BackendRejection, BackendTransportError
from .models import Post, Profile
from .outcomes import HTTP_ERROR_CODE, NOT_FOUND_CODE, Failure

logger = logging.getLogger("postboard.pages")

COMPLETE_PROFILE_PATH = "/complete-profile"
UPDATE_FAILED_MESSAGE = "Failed to update profile"
SIGNUP_FAILED_MESSAGE = "Failed to create account"
INVALID_PROVIDER_MESSAGE = "Invalid provider"


@dataclass(frozen=True)
class UserDetail:
    profile: Profile
    posts: List[Post]
    is_own_profile: bool


@dataclass(frozen=True)
class FormError:
    """A form submission the backend refused; the form is shown again."""

    error: str
    values: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, str]:
        return {"error": self.error}


def _user_path(user_id: str) -> str:
    return f"/users/{user_id}"


def _read_failure(failure: Failure, message: Optional[str] = None) -> BackendRejection:
    status_code = status.HTTP_404_NOT_FOUND if failure.code == NOT_FOUND_CODE else None
    return BackendRejection(message or failure.message, code=failure.code, status_code=status_code)


async def load_user_detail(ctx: RequestContext, user_id: str) -> UserDetail:
    identity = authorize(ctx, Policy.PUBLIC_READ, user_id)

    profile_outcome = await ctx.backend.get_user(user_id)
    if isinstance(profile_outcome, Failure):
        raise _read_failure(profile_outcome)
    profile = profile_outcome.value

    posts_outcome = await ctx.backend.list_posts(user_id, params=posts_query(identity))
    if isinstance(posts_outcome, Failure):
        raise _read_failure(posts_outcome, f"Failed to fetch posts: {posts_outcome.message}")

    return UserDetail(
        profile=profile,
        posts=posts_outcome.value,
        is_own_profile=is_owner(identity, profile.id),
    )


def _complete_profile_redirect(ctx: RequestContext) -> RedirectResponse:
    response = RedirectResponse(COMPLETE_PROFILE_PATH, status_code=status.HTTP_303_SEE_OTHER)
    cookie_header = ctx.request.headers.get("cookie")
    if cookie_header:
        response.headers.append("set-cookie", cookie_header)
    return response


async def load_user_edit(ctx: RequestContext, user_id: str) -> Union[Profile, RedirectResponse]:
    authorize(ctx, Policy.SELF_ONLY, user_id)

    outcome = await ctx.backend.get_user(user_id)
    if isinstance(outcome, Failure):
        if outcome.is_not_found:
            logger.info("User %s has no profile yet; redirecting to profile completion", user_id)
            return _complete_profile_redirect(ctx)
        raise _read_failure(outcome)
    return outcome.value


async def submit_user_edit(
    ctx: RequestContext,
    user_id: str,
    *,
    name: str,
    bio: Optional[str],
) -> Union[FormError, RedirectResponse]:
    authorize(ctx, Policy.SELF_ONLY, user_id)

    values = {"name": name, "bio": bio or ""}
    try:
        outcome = await ctx.backend.update_user(user_id, name=name.strip(), bio=bio)
    except BackendTransportError:
        logger.exception("Error updating user %s", user_id)
        return FormError(UPDATE_FAILED_MESSAGE, values)

    if isinstance(outcome, Failure):
        logger.info("Backend rejected profile update for %s: %s", user_id, outcome.code)
        message = outcome.message if outcome.code != HTTP_ERROR_CODE else UPDATE_FAILED_MESSAGE
        return FormError(message, values)

    return RedirectResponse(_user_path(user_id), status_code=status.HTTP_303_SEE_OTHER)


def submit_signup(
    ctx: RequestContext,
    provider: Optional[str],
    *,
    redirect_to: str,
) -> Union[FormError, RedirectResponse]:
    authorize(ctx, Policy.NONE)

    if provider != "google":
        return FormError(INVALID_PROVIDER_MESSAGE)

    result = sign_in_with_google(ctx, redirect_to)
    if result.ok and result.url:
        return RedirectResponse(result.url, status_code=status.HTTP_303_SEE_OTHER)
    return FormError(result.error or SIGNUP_FAILED_MESSAGE)


__all__ = [
    "COMPLETE_PROFILE_PATH",
    "FormError",
    "UserDetail",
    "load_user_detail",
    "load_user_edit",
    "submit_signup",
    "submit_user_edit",
]
