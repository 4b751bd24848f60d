"""HTTP client for the profiles and posts backend API."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

import httpx

from .errors import BackendTransportError
from .models import Post, Profile, parse_posts
from .outcomes import ApiOutcome, classify

logger = logging.getLogger("postboard.backend")

T = TypeVar("T")


def _normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("Backend API base URL must not be empty")
    return cleaned.rstrip("/")


def _build_endpoint(base_url: str, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"{base_url}{path}"


class BackendClient:
    """Talk to the backend API on behalf of a single request.

    A client is bound to the caller's access token, so one is built per
    request rather than shared.
    """

    def __init__(
        self,
        base_url: str,
        *,
        access_token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = _normalize_base_url(base_url)
        self._access_token = access_token
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        parse: Callable[[Any], T],
        *,
        params: Optional[Mapping[str, str]] = None,
        json: Optional[Mapping[str, Any]] = None,
    ) -> ApiOutcome[T]:
        url = _build_endpoint(self._base_url, path)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(),
                )
        except httpx.RequestError as exc:
            raise BackendTransportError(f"Failed to contact backend API: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise BackendTransportError(
                f"Backend API returned an invalid response (status {response.status_code})"
            ) from exc

        outcome = classify(payload, parse, status_code=response.status_code)
        logger.debug("%s %s -> %s (%s)", method, path, response.status_code, type(outcome).__name__)
        return outcome

    async def get_user(self, user_id: str) -> ApiOutcome[Profile]:
        return await self._request("GET", f"/users/{user_id}", Profile.from_dict)

    async def update_user(self, user_id: str, *, name: str, bio: Optional[str]) -> ApiOutcome[Profile]:
        return await self._request(
            "PATCH",
            f"/users/{user_id}",
            Profile.from_dict,
            json={"name": name, "bio": bio},
        )

    async def list_posts(self, user_id: str, *, params: Mapping[str, str]) -> ApiOutcome[List[Post]]:
        return await self._request(
            "GET",
            f"/users/{user_id}/posts",
            parse_posts,
            params=params,
        )


BackendFactory = Callable[[Optional[str]], BackendClient]


def backend_factory(
    base_url: str,
    *,
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BackendFactory:
    """Return a callable that builds a :class:`BackendClient` per access token."""

    def _create(access_token: Optional[str]) -> BackendClient:
        return BackendClient(
            base_url,
            access_token=access_token,
            timeout=timeout,
            transport=transport,
        )

    return _create


__all__ = ["BackendClient", "BackendFactory", "backend_factory"]
