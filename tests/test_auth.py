"""Auth: register, login, sessions, lockout."""
from datetime import timedelta

from fastapi.testclient import TestClient

from dawaak.api import auth
from dawaak.core.config import settings
from dawaak.core.security import verify_dummy_password
from dawaak.store import RecordStore
from dawaak.store.timestamps import to_iso, utc_now

from conftest import ADMIN_PASSWORD, DOCTOR_PASSWORD

REGISTRATION = {
    "username": "ahmed",
    "password": "secure123",
    "full_name": "أحمد علي",
    "email": "ahmed@example.com",
    "phone": "+967711111111",
    "age": 41,
    "gender": "male",
}


def test_register_success(client: TestClient, store: RecordStore):
    r = client.post("/auth/register", json=REGISTRATION)
    assert r.status_code == 201
    j = r.json()
    assert j["username"] == "ahmed"
    assert j["email"] == "ahmed@example.com"
    assert j["user_type"] == "user"
    assert j["is_active"] is True
    assert "password" not in j
    assert "password_hash" not in j
    assert store.get("users", j["id"])["password_hash"].startswith("$2")


def test_register_cannot_choose_user_type(client: TestClient):
    r = client.post("/auth/register", json={**REGISTRATION, "user_type": "admin"})
    assert r.status_code == 201
    assert r.json()["user_type"] == "user"


def test_register_validation(client: TestClient):
    r = client.post(
        "/auth/register",
        json={**REGISTRATION, "email": "bad", "password": "123"},
    )
    assert r.status_code == 400
    assert r.json()["status_code"] == 400

    r = client.post("/auth/register", json={"username": "x"})
    assert r.status_code == 400


def test_register_duplicates_conflict(client: TestClient):
    assert client.post("/auth/register", json=REGISTRATION).status_code == 201
    r = client.post("/auth/register", json={**REGISTRATION, "email": "other@example.com"})
    assert r.status_code == 409
    r = client.post("/auth/register", json={**REGISTRATION, "username": "ahmed2"})
    assert r.status_code == 409


def test_login_success(client: TestClient, store: RecordStore):
    client.post("/auth/register", json=REGISTRATION)
    r = client.post("/auth/login", json={"username": "ahmed", "password": "secure123"})
    assert r.status_code == 200
    j = r.json()
    assert j["token_type"] == "bearer"
    assert j["access_token"]
    assert j["user"]["username"] == "ahmed"
    assert "password_hash" not in j["user"]

    session = store.find_one("sessions", {"user_id": j["user"]["id"]})
    assert session["is_active"] is True
    assert session["expires_at"] == j["expires_at"]
    assert store.get("users", j["user"]["id"])["last_login"]


def test_seeded_accounts_can_log_in(client: TestClient, login_as):
    headers = login_as("admin", ADMIN_PASSWORD)
    assert client.get("/auth/me", headers=headers).json()["user_type"] == "admin"
    headers = login_as("dr.afrah", DOCTOR_PASSWORD)
    assert client.get("/auth/me", headers=headers).json()["user_type"] == "doctor"


def test_login_wrong_password(client: TestClient, patient):
    r = client.post("/auth/login", json={"username": "patient1", "password": "wrong-pass"})
    assert r.status_code == 401
    assert r.json()["error"]
    r = client.post("/auth/login", json={"username": "nobody", "password": "whatever"})
    assert r.status_code == 401


def test_lockout_after_repeated_failures(client: TestClient, store: RecordStore, patient):
    for _ in range(settings.max_login_attempts):
        r = client.post("/auth/login", json={"username": "patient1", "password": "wrong-pass"})
        assert r.status_code == 401
    user = store.find_one("users", {"username": "patient1"})
    assert user["is_locked"] is True
    assert user["locked_until"]

    # correct password is refused while locked
    r = client.post("/auth/login", json={"username": "patient1", "password": "secret123"})
    assert r.status_code == 403


def test_expired_lock_allows_login(client: TestClient, store: RecordStore, patient):
    user = store.find_one("users", {"username": "patient1"})
    store.update(
        "users",
        user["id"],
        {"is_locked": True, "login_attempts": 5, "locked_until": to_iso(utc_now() - timedelta(minutes=1))},
    )
    r = client.post("/auth/login", json={"username": "patient1", "password": "secret123"})
    assert r.status_code == 200
    user = store.get("users", user["id"])
    assert user["is_locked"] is False
    assert user["login_attempts"] == 0


def test_inactive_user_cannot_log_in(client: TestClient, store: RecordStore, patient):
    store.update("users", patient["id"], {"is_active": False})
    r = client.post("/auth/login", json={"username": "patient1", "password": "secret123"})
    assert r.status_code == 401


def test_me_requires_token(client: TestClient):
    r = client.get("/auth/me")
    assert r.status_code == 401
    assert r.json()["error"] == "Access token required."
    r = client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401


def test_me_returns_current_user(client: TestClient, patient_headers):
    r = client.get("/auth/me", headers=patient_headers)
    assert r.status_code == 200
    assert r.json()["username"] == "patient1"
    assert "password_hash" not in r.json()


def test_logout_ends_session(client: TestClient, store: RecordStore, patient_headers):
    r = client.post("/auth/logout", headers=patient_headers)
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert client.get("/auth/me", headers=patient_headers).status_code == 401
    session = store.find("sessions", {"is_active": False}).data[0]
    assert session["ended_at"]


def test_expired_session_rejected(client: TestClient, store: RecordStore, patient_headers):
    for session in store.find("sessions").data:
        store.update("sessions", session["id"], {"expires_at": to_iso(utc_now() - timedelta(seconds=1))})
    assert client.get("/auth/me", headers=patient_headers).status_code == 401


def test_deactivated_user_session_rejected(client: TestClient, store: RecordStore, patient, patient_headers):
    store.update("users", patient["id"], {"is_active": False})
    assert client.get("/auth/me", headers=patient_headers).status_code == 401


def test_unknown_username_still_runs_a_password_check(client: TestClient, monkeypatch):
    checked = []
    monkeypatch.setattr(auth, "verify_dummy_password", lambda plain: checked.append(plain) or False)
    r = client.post("/auth/login", json={"username": "ghost", "password": "whatever"})
    assert r.status_code == 401
    assert checked == ["whatever"]


def test_dummy_password_check_never_matches():
    assert verify_dummy_password("dawaak-unknown-user") is False
