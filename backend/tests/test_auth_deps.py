from datetime import timedelta

import pytest
from starlette.requests import Request

from app.api.deps import get_current_user, read_api_key
from app.utils.auth import get_email_domain, is_allowed_domain


@pytest.fixture()
def auth_client(app, client):
    """Client that authenticates with real access tokens."""
    app.dependency_overrides.pop(get_current_user, None)
    return client


def _bearer(token):
    return {"Authorization": f"Bearer {token}"}


def test_me_returns_token_identity(auth_client, make_token):
    token = make_token(
        sub="abc-123",
        email="Rad.Ops@VestaTelemed.com",
        user_metadata={"full_name": "Rad Ops", "avatar_url": "https://img/a.png"},
    )

    response = auth_client.get("/api/auth/me", headers=_bearer(token))

    assert response.status_code == 200
    assert response.json() == {
        "id": "abc-123",
        "email": "Rad.Ops@VestaTelemed.com",
        "name": "Rad Ops",
        "avatar_url": "https://img/a.png",
        "domain": "vestatelemed.com",
    }


def test_me_reads_alternate_metadata_keys(auth_client, make_token):
    token = make_token(user_metadata={"name": "Alt", "picture": "https://img/b.png"})

    payload = auth_client.get("/api/auth/me", headers=_bearer(token)).json()

    assert payload["name"] == "Alt"
    assert payload["avatar_url"] == "https://img/b.png"


def test_unlisted_domain_is_forbidden(auth_client, make_token):
    token = make_token(email="someone@gmail.com")

    response = auth_client.get("/api/auth/me", headers=_bearer(token))

    assert response.status_code == 403
    assert response.json()["error"]["message"] == "Unauthorized domain"


@pytest.mark.parametrize(
    "token_kwargs",
    [
        {"secret": "wrong-secret"},
        {"audience": "anon"},
        {"expires_in": timedelta(minutes=-5)},
        {"sub": ""},
        {"email": ""},
    ],
)
def test_invalid_tokens_are_unauthorized(auth_client, make_token, token_kwargs):
    response = auth_client.get("/api/auth/me", headers=_bearer(make_token(**token_kwargs)))

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Could not validate credentials"
    assert response.headers["WWW-Authenticate"] == "Bearer"


def test_protected_routes_require_a_token(auth_client):
    for method, path in [("get", "/api/chats"), ("post", "/api/chat"), ("get", "/api/proxy-file")]:
        response = getattr(auth_client, method)(path)
        assert response.status_code in (401, 403)


def test_garbage_token_is_unauthorized(auth_client):
    response = auth_client.get("/api/chats", headers=_bearer("not-a-jwt"))

    assert response.status_code == 401


def test_email_domain_helpers():
    assert get_email_domain("a@Example.COM") == "example.com"
    assert get_email_domain("no-at-sign") is None
    assert get_email_domain(None) is None
    assert is_allowed_domain("a@vestasolutions.com")
    assert not is_allowed_domain("a@vestasolutions.com.evil.io")
    assert is_allowed_domain("a@corp.io", allowed_domains=[" Corp.IO "])
    assert not is_allowed_domain("", allowed_domains=["corp.io"])


def _request(headers):
    scope = {
        "type": "http",
        "headers": [(key.lower().encode(), value.encode()) for key, value in headers.items()],
    }
    return Request(scope)


def test_read_api_key():
    assert read_api_key(_request({"X-API-Key": "k1"})) == "k1"
    assert read_api_key(_request({"Authorization": "Bearer k2"})) == "k2"
    assert read_api_key(_request({"Authorization": "Basic k3"})) is None
    assert read_api_key(_request({})) is None
