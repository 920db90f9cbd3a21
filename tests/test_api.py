import pytest
from fastapi.testclient import TestClient

from marketindex.core.exceptions import StorageError
from marketindex.core.security import create_access_token
from marketindex.core.storage import MediaStorage
from marketindex.deps import get_media_storage
from marketindex.main import app
from marketindex.modules.auth.services import firebase_auth

API = "/api/v1"


@pytest.fixture
def client(storage, monkeypatch):
    def _verify(token):
        if token == "bad":
            return False, None
        return True, {"uid": f"uid-{token}", "email": f"{token}@example.com", "name": token.title()}

    monkeypatch.setattr(firebase_auth, "verify_firebase_token", _verify)
    app.dependency_overrides[get_media_storage] = lambda: storage
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def sign_in(client):
    def _sign_in(name):
        response = client.post(f"{API}/auth/firebase-signin", json={"firebase_token": name})
        assert response.status_code == 200, response.text
        body = response.json()
        return {"id": body["user_id"], "headers": {"Authorization": f"Bearer {body['access_token']}"}}
    return _sign_in


def _befriend(client, user_a, user_b):
    response = client.post(f"{API}/friends/request", json={"target_id": user_b["id"]}, headers=user_a["headers"])
    assert response.status_code == 200, response.text
    relationship_id = response.json()["id"]
    response = client.put(f"{API}/friends/request/{relationship_id}/accept", headers=user_b["headers"])
    assert response.status_code == 200, response.text
    return relationship_id


def _upload(client, user, category="tips"):
    response = client.post(
        f"{API}/media/{category}",
        files={"file": ("chart.png", b"\x89PNG chart", "image/png")},
        headers=user["headers"],
    )
    assert response.status_code == 200, response.text
    return response.json()["media_ref"]


def test_sign_in_creates_the_profile_once(client):
    first = client.post(f"{API}/auth/firebase-signin", json={"firebase_token": "alice"}).json()
    second = client.post(f"{API}/auth/firebase-signin", json={"firebase_token": "alice"}).json()
    assert first["is_new_user"] is True
    assert second["is_new_user"] is False
    assert first["user_id"] == second["user_id"]

    me = client.get(f"{API}/users/me", headers={"Authorization": f"Bearer {second['access_token']}"})
    assert me.status_code == 200
    assert me.json()["username"] == "alice"


def test_invalid_tokens_are_rejected(client):
    assert client.post(f"{API}/auth/firebase-signin", json={"firebase_token": "bad"}).status_code == 401
    assert client.get(f"{API}/users/me", headers={"Authorization": "Bearer nonsense"}).status_code == 403
    assert client.get(f"{API}/users/me").status_code == 401


def test_domain_errors_map_to_status_codes(client, sign_in):
    alice, bob = sign_in("alice"), sign_in("bob")

    response = client.post(f"{API}/friends/request", json={"target_id": alice["id"]}, headers=alice["headers"])
    assert response.status_code == 400

    _befriend(client, alice, bob)
    response = client.post(f"{API}/friends/request", json={"target_id": alice["id"]}, headers=bob["headers"])
    assert response.status_code == 409

    response = client.post(
        f"{API}/content/",
        json={"kind": "tip", "recipient_id": bob["id"], "media_ref": _upload(client, alice), "symbol_tag": "TOOLONG"},
        headers=alice["headers"],
    )
    assert response.status_code == 422

    assert client.post(f"{API}/content/missing/consume", headers=bob["headers"]).status_code == 404


def test_tip_round_trip(client, sign_in):
    alice, bob = sign_in("alice"), sign_in("bob")
    _befriend(client, alice, bob)
    media_ref = _upload(client, alice)

    media = client.get(f"{API}/media/{media_ref}")
    assert media.status_code == 200
    assert media.content == b"\x89PNG chart"

    response = client.post(
        f"{API}/content/",
        json={"kind": "tip", "recipient_id": bob["id"], "media_ref": media_ref, "symbol_tag": "$aapl"},
        headers=alice["headers"],
    )
    assert response.status_code == 200, response.text
    [item] = response.json()
    assert item["symbol_tag"] == "AAPL"

    inbox = client.get(f"{API}/content/inbox", headers=bob["headers"]).json()
    assert [i["id"] for i in inbox] == [item["id"]]

    assert client.post(f"{API}/content/{item['id']}/consume", headers=bob["headers"]).json()["consumed"] is True
    assert client.get(f"{API}/content/inbox", headers=bob["headers"]).json() == []

    assert client.delete(f"{API}/content/{item['id']}", headers=alice["headers"]).status_code == 200
    assert client.get(f"{API}/media/{media_ref}").status_code == 404

    kinds = [n["type"] for n in client.get(f"{API}/notifications/", headers=bob["headers"]).json()]
    assert sorted(kinds) == ["content_received", "friend_requested"]


def test_story_broadcast_reaches_every_friend(client, sign_in):
    alice, bob, carol = sign_in("alice"), sign_in("bob"), sign_in("carol")
    _befriend(client, alice, bob)
    _befriend(client, carol, alice)

    response = client.post(
        f"{API}/content/",
        json={"kind": "story", "media_ref": _upload(client, alice, "stories")},
        headers=alice["headers"],
    )
    assert response.status_code == 200, response.text
    assert sorted(i["recipient_id"] for i in response.json()) == sorted([bob["id"], carol["id"]])
    assert len(client.get(f"{API}/content/inbox", headers=carol["headers"]).json()) == 1


def test_upload_limits(client, sign_in):
    alice = sign_in("alice")
    response = client.post(f"{API}/media/videos", files={"file": ("a.bin", b"x")}, headers=alice["headers"])
    assert response.status_code == 422
    response = client.post(f"{API}/media/tips", files={"file": ("a.bin", b"")}, headers=alice["headers"])
    assert response.status_code == 400


def test_delete_account(client, sign_in):
    alice, bob = sign_in("alice"), sign_in("bob")
    _befriend(client, alice, bob)

    response = client.delete(f"{API}/users/me", headers=alice["headers"])
    assert response.status_code == 200, response.text
    assert response.json()["state"] == "done"

    assert client.get(f"{API}/users/me", headers=alice["headers"]).status_code == 404
    assert client.get(f"{API}/friends/", headers=bob["headers"]).json() == []


def test_delete_account_partial_failure_is_503(client, sign_in, monkeypatch):
    alice = sign_in("alice")

    def _broken_delete_prefix(self, prefix):
        raise StorageError("bucket unavailable")

    monkeypatch.setattr(MediaStorage, "delete_prefix", _broken_delete_prefix)
    response = client.delete(f"{API}/users/me", headers=alice["headers"])

    assert response.status_code == 503
    body = response.json()
    assert body["user_id"] == alice["id"]
    assert body["failed_steps"] == ["storage_reclaiming"]


def test_delete_account_can_be_repeated_after_503(client, sign_in, monkeypatch):
    alice = sign_in("alice")

    def _broken_delete_prefix(self, prefix):
        raise StorageError("bucket unavailable")

    with monkeypatch.context() as patched:
        patched.setattr(MediaStorage, "delete_prefix", _broken_delete_prefix)
        assert client.delete(f"{API}/users/me", headers=alice["headers"]).status_code == 503

    # The profile is gone but the job is on record, so the same token may repeat the call
    assert client.get(f"{API}/users/me", headers=alice["headers"]).status_code == 404
    response = client.delete(f"{API}/users/me", headers=alice["headers"])
    assert response.status_code == 200, response.text
    assert response.json() == {"message": "Account deleted", "user_id": alice["id"], "state": "done"}


def test_delete_account_without_profile_or_job_is_404(client):
    headers = {"Authorization": f"Bearer {create_access_token('never-signed-up')}"}
    assert client.delete(f"{API}/users/me", headers=headers).status_code == 404


def test_groups_endpoints(client, sign_in):
    alice, bob = sign_in("alice"), sign_in("bob")
    response = client.post(f"{API}/groups/", json={"name": "desk", "member_ids": [bob["id"]]}, headers=alice["headers"])
    assert response.status_code == 200, response.text
    group = response.json()
    assert sorted(group["member_ids"]) == sorted([alice["id"], bob["id"]])

    response = client.delete(f"{API}/groups/{group['id']}/members/{bob['id']}", headers=bob["headers"])
    assert response.json() == {"group_id": group["id"], "deleted": False}


def test_group_messages_endpoints(client, sign_in):
    alice, bob, carol = sign_in("alice"), sign_in("bob"), sign_in("carol")
    group = client.post(f"{API}/groups/", json={"name": "desk", "member_ids": [bob["id"]]},
                        headers=alice["headers"]).json()
    messages_url = f"{API}/groups/{group['id']}/messages"

    response = client.post(messages_url, json={"text": "AAPL gap fill?"}, headers=alice["headers"])
    assert response.status_code == 200, response.text
    client.post(messages_url, json={"text": "already filled"}, headers=bob["headers"])

    response = client.get(messages_url, headers=bob["headers"])
    assert response.status_code == 200
    assert [m["text"] for m in response.json()] == ["AAPL gap fill?", "already filled"]

    assert client.post(messages_url, json={"text": "  "}, headers=alice["headers"]).status_code == 400
    assert client.get(messages_url, headers=carol["headers"]).status_code == 400
