from datetime import timedelta

from fastapi.testclient import TestClient

from healthwallet.app import app
from healthwallet.auth import jwt
from healthwallet.auth.deps import get_current_user
from healthwallet.models.user import User


def test_token_roundtrip():
    token = jwt.create_access_token({"sub": "user-1"})
    assert jwt.get_current_user_from_token(token)["sub"] == "user-1"


def test_refresh_and_expired_tokens_rejected():
    assert jwt.get_current_user_from_token(jwt.create_access_token({"sub": "u", "type": "refresh"})) is None
    assert jwt.get_current_user_from_token(jwt.create_access_token({"sub": "u"}, timedelta(seconds=-5))) is None
    assert jwt.get_current_user_from_token(jwt.create_access_token({"name": "no subject"})) is None
    assert jwt.get_current_user_from_token("not-a-token") is None


def _real_auth_client():
    override = app.dependency_overrides.pop(get_current_user)
    return TestClient(app), override


def test_missing_token_is_401():
    client, override = _real_auth_client()
    try:
        r = client.get("/api/records/")
    finally:
        app.dependency_overrides[get_current_user] = override
    assert r.status_code == 401
    assert r.json()["code"] == "UNAUTHORIZED"


def test_token_resolves_user_by_id_or_email(db):
    db.add(User(id="user-7", email="seven@example.com"))
    db.commit()
    client, override = _real_auth_client()
    try:
        by_id = client.get("/api/records/", headers={"Authorization": f"Bearer {jwt.create_access_token({'sub': 'user-7'})}"})
        by_email = client.get(
            "/api/records/",
            headers={"Authorization": f"Bearer {jwt.create_access_token({'sub': 'seven@example.com'})}"},
        )
        unknown = client.get("/api/records/", headers={"Authorization": f"Bearer {jwt.create_access_token({'sub': 'ghost'})}"})
    finally:
        app.dependency_overrides[get_current_user] = override
    assert by_id.status_code == 200
    assert by_email.status_code == 200
    assert unknown.status_code == 401
