from types import SimpleNamespace

import pytest
from firebase_admin import auth

import set_admin_claim as cli


@pytest.fixture
def firebase_users(monkeypatch, fake_db):
    users = {"boss@phrames.app": SimpleNamespace(uid="boss", email="boss@phrames.app",
                                                 custom_claims={"plan": "pro"})}
    by_uid = {u.uid: u for u in users.values()}

    def get_user_by_email(email, app=None):
        if email not in users:
            raise auth.UserNotFoundError(f"No user record found for {email}")
        return users[email]

    def set_custom_user_claims(uid, claims, app=None):
        by_uid[uid].custom_claims = claims

    monkeypatch.setattr(cli, "init_firebase", lambda settings: object())
    monkeypatch.setattr(cli, "firestore_client", lambda app: fake_db)
    monkeypatch.setattr(cli.auth, "get_user_by_email", get_user_by_email)
    monkeypatch.setattr(cli.auth, "set_custom_user_claims", set_custom_user_claims)
    monkeypatch.setattr(cli.auth, "get_user", lambda uid, app=None: by_uid[uid])
    return by_uid


def test_cli_grants_admin_and_closes_bootstrap(firebase_users, fake_db):
    assert cli.set_admin_claim("boss@phrames.app") is True
    assert firebase_users["boss"].custom_claims == {"plan": "pro", "isAdmin": True}
    assert fake_db.read("users", "boss")["isAdmin"] is True
    assert fake_db.read("system", "admin_bootstrap")["grantedBy"] == "boss"
    assert [e["metadata"]["policy"] for e in fake_db.all("logs")] == ["cli"]


def test_cli_unknown_user(firebase_users, fake_db):
    assert cli.set_admin_claim("nobody@phrames.app") is False
    assert fake_db.all("logs") == []


def test_cli_firebase_init_failure(monkeypatch):
    def boom(settings):
        raise ValueError("Missing Firebase credentials")

    monkeypatch.setattr(cli, "init_firebase", boom)
    assert cli.set_admin_claim("boss@phrames.app") is False
