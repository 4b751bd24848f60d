"""Domain models read from the backend API and the identity provider."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional


def _parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid timestamp: {value!r}")
    cleaned = value.strip()
    if cleaned.endswith("Z"):
        cleaned = cleaned[:-1] + "+00:00"
    return datetime.fromisoformat(cleaned)


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class Identity:
    """The authenticated principal of a request."""

    id: str
    email: Optional[str] = None

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Identity":
        identifier = data.get("id")
        if not identifier:
            raise ValueError("Identity payload is missing an id")
        return Identity(id=str(identifier), email=_optional_str(data.get("email")))


@dataclass(frozen=True)
class Profile:
    """A user profile owned by the backend API."""

    id: str
    name: str
    email: str
    bio: Optional[str]
    avatar_url: Optional[str]
    created_at: datetime
    updated_at: datetime

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Profile":
        """Create a :class:`Profile` from a backend ``/users/{id}`` payload."""
        required_fields = {"id", "name", "created_at", "updated_at"}
        missing = required_fields - data.keys()
        if missing:
            raise ValueError(f"Missing required profile fields: {', '.join(sorted(missing))}")

        return Profile(
            id=str(data["id"]),
            name=str(data["name"]),
            email=str(data.get("email") or ""),
            bio=_optional_str(data.get("bio")),
            avatar_url=_optional_str(data.get("avatar_url")),
            created_at=_parse_timestamp(data["created_at"]),
            updated_at=_parse_timestamp(data["updated_at"]),
        )


@dataclass(frozen=True)
class Post:
    """A post as listed on a user's detail page."""

    id: str
    title: str
    content: str
    created_at: datetime
    updated_at: datetime
    author_id: str
    is_public: bool
    author_name: Optional[str] = None

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Post":
        required_fields = {"id", "title", "content", "created_at", "updated_at", "user_id"}
        missing = required_fields - data.keys()
        if missing:
            raise ValueError(f"Missing required post fields: {', '.join(sorted(missing))}")

        return Post(
            id=str(data["id"]),
            title=str(data["title"]),
            content=str(data["content"]),
            created_at=_parse_timestamp(data["created_at"]),
            updated_at=_parse_timestamp(data["updated_at"]),
            author_id=str(data["user_id"]),
            is_public=bool(data.get("is_public", False)),
            author_name=_optional_str(data.get("user_name")),
        )


def parse_posts(payload: object) -> List[Post]:
    if not isinstance(payload, list):
        raise ValueError("Posts payload must be a list")
    return [Post.from_dict(item) for item in payload]


@dataclass(frozen=True)
class AuthSession:
    """Tokens issued by the identity provider for a signed-in user."""

    access_token: str
    refresh_token: str
    expires_in: int
    identity: Identity

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "AuthSession":
        try:
            access_token = str(data["access_token"])
            refresh_token = str(data["refresh_token"])
            expires_in = int(data.get("expires_in") or 3600)
            user = data["user"]
        except (KeyError, TypeError, ValueError) as exc:
            raise ValueError("Session payload was missing required fields") from exc
        if not isinstance(user, Mapping):
            raise ValueError("Session payload did not include a user")
        return AuthSession(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            identity=Identity.from_dict(user),
        )


__all__ = ["AuthSession", "Identity", "Post", "Profile", "parse_posts"]
