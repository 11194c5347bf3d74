from datetime import timedelta

import jwt
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import auth
import feed
from errors import Unauthorized


def test_token_round_trip():
    user_id = str(ObjectId())

    assert auth.decode_token(auth.create_token(user_id)) == user_id


def test_expired_token_is_rejected():
    token = auth.create_token(str(ObjectId()), expires_in=timedelta(seconds=-5))

    with pytest.raises(Unauthorized):
        auth.decode_token(token)


def test_token_signed_with_another_secret_is_rejected():
    token = jwt.encode({"sub": str(ObjectId())}, "someone-else", algorithm="HS256")

    with pytest.raises(Unauthorized):
        auth.decode_token(token)


def test_password_hashing():
    hashed = auth.hash_password("secret123")

    assert hashed != "secret123"
    assert auth.verify_password("secret123", hashed)
    assert not auth.verify_password("wrong", hashed)
    assert not auth.verify_password("secret123", "")


@pytest.mark.parametrize(
    "header",
    [None, "", "Bearer", "Basic abc", "Bearer not.a.jwt", "Token abc"],
)
def test_required_routes_reject_bad_credentials(client, header):
    headers = {"Authorization": header} if header is not None else {}

    r = client.get("/api/users/profile", headers=headers)

    assert r.status_code == 401
    assert set(r.json()) == {"message"}


def test_token_for_deleted_user_is_rejected(client, db, alice):
    db["user"].delete_one({"_id": ObjectId(alice[0])})

    r = client.get("/api/users/profile", headers=alice[1])

    assert r.status_code == 401
    assert r.json() == {"message": "Not authorized, user not found"}


def test_identity_carries_role(db, alice):
    db["user"].update_one({"_id": ObjectId(alice[0])}, {"$set": {"role": "admin"}})

    identity = auth.resolve_identity(db, alice[1]["Authorization"])

    assert identity.id == alice[0]
    assert identity.role == "admin"


def test_optional_mode_drops_bad_token(db):
    assert auth.optional_user(authorization="Bearer junk", db=db) is None
    assert auth.optional_user(authorization=None, db=db) is None


# -------------------- Error mapping --------------------

def test_unmatched_route(client):
    r = client.get("/api/nowhere")

    assert r.status_code == 404
    assert r.json() == {"message": "Route not found"}


def test_health(client):
    r = client.get("/health")

    assert r.status_code == 200
    assert r.json()["status"] == "OK"
    assert r.json()["database_connected"] is True


def test_unexpected_failure_maps_to_server_error(app, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("kaput")

    monkeypatch.setattr(feed, "recommended", boom)
    with TestClient(app, raise_server_exceptions=False) as client:
        r = client.get("/api/videos/recommended")

    assert r.status_code == 500
    assert r.json()["message"] == "Server error"


def test_stack_is_hidden_outside_development(app, monkeypatch):
    import main

    def boom(*args, **kwargs):
        raise RuntimeError("kaput")

    monkeypatch.setattr(main, "APP_ENV", "production")
    monkeypatch.setattr(feed, "short_videos", boom)
    with TestClient(app, raise_server_exceptions=False) as client:
        r = client.get("/api/videos/short")

    assert r.json() == {"message": "Server error"}
