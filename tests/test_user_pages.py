import json
import sys
from pathlib import Path
from typing import List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from postboard.config import Settings
from postboard.errors import BackendTransportError
from postboard.identity import IdentityProvider
from postboard.models import Profile, parse_posts
from postboard.outcomes import classify
from postboard.web import create_app


TOKENS = {"token-123": "123", "token-456": "456"}

PROFILE = {
    "id": "123",
    "name": "Aya",
    "email": "aya@example.com",
    "bio": None,
    "avatar_url": None,
    "created_at": "2024-05-01T10:00:00Z",
    "updated_at": "2024-05-02T10:00:00Z",
}


def _post(post_id: str, *, is_public: bool = True) -> dict:
    return {
        "id": post_id,
        "title": f"Title {post_id}",
        "content": f"Content of {post_id}",
        "created_at": "2024-05-03T10:00:00Z",
        "updated_at": "2024-05-03T10:00:00Z",
        "user_id": "123",
        "is_public": is_public,
        "user_name": "Aya",
    }


def _auth_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/auth/v1/user":
        token = request.headers.get("authorization", "").removeprefix("Bearer ")
        user_id = TOKENS.get(token)
        if user_id is None:
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json={"id": user_id, "email": f"{user_id}@example.com"})
    if request.url.path == "/auth/v1/token":
        body = json.loads(request.content)
        if body.get("refresh_token") == "refresh-456":
            return httpx.Response(
                200,
                json={
                    "access_token": "fresh-456",
                    "refresh_token": "refresh-456-next",
                    "expires_in": 3600,
                    "user": {"id": "456"},
                },
            )
        return httpx.Response(400, json={"error_description": "Invalid Refresh Token"})
    return httpx.Response(404, json={"msg": "not found"})


class FakeBackend:
    """Backend double that records every call and replays raw JSON payloads."""

    def __init__(
        self,
        *,
        user: object = PROFILE,
        posts: object = None,
        update: object = PROFILE,
        update_status: int = 200,
        fail_with: Optional[Exception] = None,
    ) -> None:
        self.user = user
        self.posts = [] if posts is None else posts
        self.update = update
        self.update_status = update_status
        self.fail_with = fail_with
        self.calls: List[tuple] = []
        self.tokens: List[Optional[str]] = []

    def __call__(self, access_token: Optional[str]) -> "FakeBackend":
        self.tokens.append(access_token)
        return self

    async def get_user(self, user_id: str):
        self.calls.append(("get_user", user_id))
        if self.fail_with is not None:
            raise self.fail_with
        return classify(self.user, Profile.from_dict)

    async def list_posts(self, user_id: str, *, params):
        self.calls.append(("list_posts", user_id, dict(params)))
        return classify(self.posts, parse_posts)

    async def update_user(self, user_id: str, *, name: str, bio: Optional[str]):
        self.calls.append(("update_user", user_id, name, bio))
        if self.fail_with is not None:
            raise self.fail_with
        return classify(self.update, Profile.from_dict, status_code=self.update_status)


def _make_client(backend: FakeBackend, **client_kwargs) -> TestClient:
    settings = Settings(
        api_base_url="https://backend.test",
        auth_url="https://auth.test",
        auth_anon_key="anon-key",
        secure_cookies=False,
    )
    provider = IdentityProvider(
        settings.auth_url,
        settings.auth_anon_key,
        transport=httpx.MockTransport(_auth_handler),
    )
    app = create_app(settings=settings, identity_provider=provider, backend=backend)
    return TestClient(app, **client_kwargs)


def _as(user_token: str) -> dict:
    return {"sb-access-token": user_token}


def test_anonymous_detail_page_requests_public_posts_only():
    backend = FakeBackend(posts=[_post("p1")])

    with _make_client(backend) as client:
        response = client.get("/users/123")

    assert response.status_code == 200
    assert ("list_posts", "123", {"publicOnly": "true"}) in backend.calls
    assert backend.tokens == [None]
    assert response.text.count('class="post"') == 1
    assert "Title p1" in response.text
    assert 'data-action="new-post"' not in response.text
    assert 'data-action="edit-profile"' not in response.text


def test_owner_sees_private_posts_and_edit_controls():
    backend = FakeBackend(posts=[_post("p1"), _post("p2", is_public=False)])

    with _make_client(backend, cookies=_as("token-123")) as client:
        response = client.get("/users/123")

    assert response.status_code == 200
    assert ("list_posts", "123", {"currentUserId": "123"}) in backend.calls
    assert backend.tokens == ["token-123"]
    assert 'data-action="new-post"' in response.text
    assert 'data-action="edit-profile"' in response.text
    assert response.text.count("badge--private") == 1


def test_other_signed_in_user_gets_no_owner_controls():
    backend = FakeBackend(posts=[_post("p1")])

    with _make_client(backend, cookies=_as("token-456")) as client:
        response = client.get("/users/123")

    assert response.status_code == 200
    assert ("list_posts", "123", {"currentUserId": "456"}) in backend.calls
    assert 'data-action="edit-profile"' not in response.text


def test_empty_post_list_shows_empty_state():
    with _make_client(FakeBackend(posts=[])) as client:
        response = client.get("/users/123")

    assert response.status_code == 200
    assert "No posts yet." in response.text


def test_posts_error_payload_raises_instead_of_rendering():
    backend = FakeBackend(posts={"error": "boom"})

    with _make_client(backend) as client:
        response = client.get("/users/123")

    assert response.status_code == 502
    assert "Failed to fetch posts: boom" in response.text
    assert 'class="post"' not in response.text
    assert "No posts yet." not in response.text


def test_missing_profile_on_detail_page_is_error_page():
    backend = FakeBackend(user={"code": "NotFoundError", "message": "User not found"})

    with _make_client(backend) as client:
        response = client.get("/users/999")

    assert response.status_code == 404
    assert "User not found" in response.text
    assert [call[0] for call in backend.calls] == ["get_user"]


def test_read_transport_failure_reaches_error_boundary():
    backend = FakeBackend(fail_with=BackendTransportError("connection refused"))

    with _make_client(backend) as client:
        response = client.get("/users/123")

    assert response.status_code == 502
    assert "temporarily unavailable" in response.text


@pytest.mark.parametrize("method", ["get", "post"])
def test_edit_route_rejects_other_user_before_backend_call(method):
    backend = FakeBackend()

    with _make_client(backend, cookies=_as("token-456")) as client:
        if method == "get":
            response = client.get("/users/123/edit", follow_redirects=False)
        else:
            response = client.post(
                "/users/123/edit",
                data={"name": "Mallory", "bio": ""},
                follow_redirects=False,
            )

    assert response.status_code == 403
    assert backend.calls == []


def test_edit_route_rejects_anonymous_before_backend_call():
    backend = FakeBackend()

    with _make_client(backend) as client:
        response = client.post(
            "/users/123/edit",
            data={"name": "Anon", "bio": ""},
            follow_redirects=False,
        )

    assert response.status_code == 401
    assert backend.calls == []


def test_edit_loader_prefills_form_for_owner():
    backend = FakeBackend(user=dict(PROFILE, bio="Likes tea"))

    with _make_client(backend, cookies=_as("token-123")) as client:
        response = client.get("/users/123/edit")

    assert response.status_code == 200
    assert 'value="Aya"' in response.text
    assert "Likes tea" in response.text


def test_edit_loader_redirects_to_profile_completion_with_cookie_header():
    backend = FakeBackend(user={"code": "NotFoundError", "message": "User not found"})
    cookie_header = "sb-access-token=token-123; theme=dark"

    with _make_client(backend) as client:
        response = client.get(
            "/users/123/edit",
            headers={"Cookie": cookie_header},
            follow_redirects=False,
        )

    assert response.status_code == 303
    assert response.headers["location"] == "/complete-profile"
    assert cookie_header in response.headers.get_list("set-cookie")


def test_edit_loader_other_backend_error_is_error_page():
    backend = FakeBackend(user={"code": "InternalError", "message": "database unavailable"})

    with _make_client(backend, cookies=_as("token-123")) as client:
        response = client.get("/users/123/edit", follow_redirects=False)

    assert response.status_code == 502
    assert "database unavailable" in response.text


def test_valid_edit_redirects_to_detail_page_each_time():
    backend = FakeBackend()

    with _make_client(backend, cookies=_as("token-123")) as client:
        first = client.post(
            "/users/123/edit",
            data={"name": "Aya", "bio": "Likes tea"},
            follow_redirects=False,
        )
        second = client.post(
            "/users/123/edit",
            data={"name": "Aya", "bio": "Likes tea"},
            follow_redirects=False,
        )

    assert first.status_code == second.status_code == 303
    assert first.headers["location"] == second.headers["location"] == "/users/123"
    assert backend.calls == [
        ("update_user", "123", "Aya", "Likes tea"),
        ("update_user", "123", "Aya", "Likes tea"),
    ]


def test_validation_error_is_returned_as_structured_error():
    backend = FakeBackend(
        update={"code": "ValidationError", "message": "name required"},
        update_status=400,
    )

    with _make_client(backend, cookies=_as("token-123")) as client:
        response = client.post(
            "/users/123/edit",
            data={"name": "", "bio": "kept bio"},
            headers={"Accept": "application/json"},
            follow_redirects=False,
        )

    assert response.status_code == 400
    assert response.json() == {"error": "name required"}
    assert "location" not in response.headers


def test_validation_error_rerenders_form_with_submitted_values():
    backend = FakeBackend(
        update={"code": "ValidationError", "message": "name required"},
        update_status=400,
    )

    with _make_client(backend, cookies=_as("token-123")) as client:
        response = client.post(
            "/users/123/edit",
            data={"name": "", "bio": "kept bio"},
            follow_redirects=False,
        )

    assert response.status_code == 400
    assert "name required" in response.text
    assert "kept bio" in response.text
    assert "location" not in response.headers


def test_mutation_transport_failure_becomes_form_error():
    backend = FakeBackend(fail_with=BackendTransportError("connection reset"))

    with _make_client(backend, cookies=_as("token-123")) as client:
        response = client.post(
            "/users/123/edit",
            data={"name": "Aya", "bio": ""},
            headers={"Accept": "application/json"},
            follow_redirects=False,
        )

    assert response.status_code == 400
    assert response.json() == {"error": "Failed to update profile"}


def test_rejection_without_error_shape_uses_fallback_message():
    backend = FakeBackend(update={"status": "nope"}, update_status=500)

    with _make_client(backend, cookies=_as("token-123")) as client:
        response = client.post(
            "/users/123/edit",
            data={"name": "Aya", "bio": ""},
            headers={"Accept": "application/json"},
        )

    assert response.status_code == 400
    assert response.json() == {"error": "Failed to update profile"}


def test_refreshed_session_cookies_survive_authorization_failure():
    backend = FakeBackend()

    with _make_client(
        backend,
        cookies={"sb-access-token": "expired", "sb-refresh-token": "refresh-456"},
    ) as client:
        response = client.get("/users/123/edit", follow_redirects=False)

    assert response.status_code == 403
    assert backend.calls == []
    set_cookies = response.headers.get_list("set-cookie")
    assert any(value.startswith("sb-access-token=fresh-456") for value in set_cookies)
    assert any(value.startswith("sb-refresh-token=refresh-456-next") for value in set_cookies)


def test_refreshed_session_cookies_reach_redirects():
    backend = FakeBackend()

    with _make_client(
        backend,
        cookies={"sb-access-token": "expired", "sb-refresh-token": "refresh-456"},
    ) as client:
        response = client.post(
            "/users/456/edit",
            data={"name": "Ben", "bio": ""},
            follow_redirects=False,
        )

    assert response.status_code == 303
    assert response.headers["location"] == "/users/456"
    assert backend.tokens == ["fresh-456"]
    assert any(
        value.startswith("sb-access-token=fresh-456")
        for value in response.headers.get_list("set-cookie")
    )
