from app.config import settings
from app.utils import cache


def _auth():
    return {"X-API-Key": settings.hash_pid_api_key}


def test_hash_pid_tokenizes_rows(client):
    response = client.post(
        "/api/hash-pid",
        json=[{"patientId": "MRN-1", "count": 3}],
        headers=_auth(),
    )

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "tokenizedPayload": [{"patientId": "patientId_0", "count": 3}],
        "placeholdersStored": False,
    }


def test_hash_pid_stores_table_for_execution(client):
    response = client.post(
        "/api/hash-pid",
        json=[{"patientId": "MRN-1"}],
        headers={**_auth(), "execution-id": "exec-77"},
    )

    assert response.status_code == 200
    assert response.json()["placeholdersStored"] is True
    assert "phi:exec-77" in cache._cache


def test_hash_pid_accepts_bearer_key(client):
    response = client.post(
        "/api/hash-pid",
        json=[],
        headers={"Authorization": f"Bearer {settings.hash_pid_api_key}"},
    )

    assert response.status_code == 200
    assert response.json()["tokenizedPayload"] == []


def test_hash_pid_rejects_wrong_key(client):
    response = client.post("/api/hash-pid", json=[], headers={"X-API-Key": "nope"})

    assert response.status_code == 401
    assert response.json()["error"]["message"] == "Unauthorized"


def test_hash_pid_requires_configured_key(client, monkeypatch):
    monkeypatch.setattr(settings, "hash_pid_api_key", None)

    response = client.post("/api/hash-pid", json=[], headers={"X-API-Key": "anything"})

    assert response.status_code == 500
    assert response.json()["error"]["message"] == "Missing HASH_PID_API_KEY"


def test_hash_pid_rejects_non_array_body(client):
    response = client.post("/api/hash-pid", json={"patientId": "x"}, headers=_auth())

    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Body must be an array of objects"


def test_hash_pid_rejects_invalid_json(client):
    response = client.post(
        "/api/hash-pid",
        content=b"{not json",
        headers={**_auth(), "Content-Type": "application/json"},
    )

    assert response.status_code == 400


def test_hash_pid_is_rate_limited(client, monkeypatch):
    monkeypatch.setattr(settings, "hash_pid_rate_limit_max_requests", 2)

    statuses = [
        client.post("/api/hash-pid", json=[], headers=_auth()).status_code for _ in range(3)
    ]

    assert statuses == [200, 200, 429]
