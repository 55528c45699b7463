"""Admin surface: access control, stats, export/import, purge, reset."""
import json

from fastapi.testclient import TestClient

from dawaak.store import RecordStore

from conftest import DOCTOR_PASSWORD


def test_admin_requires_token_and_admin_role(client: TestClient, patient_headers):
    assert client.get("/admin/stats").status_code == 401
    r = client.get("/admin/stats", headers=patient_headers)
    assert r.status_code == 403
    assert r.json()["error"] == "Admin access required."


def test_stats(client: TestClient, admin_headers):
    r = client.get("/admin/stats", headers=admin_headers)
    assert r.status_code == 200
    j = r.json()
    assert j["tables"]["users"] == 2
    assert j["tables"]["medical_tips"] == 2
    assert j["total_records"] == sum(j["tables"].values())
    assert j["storage"] == "memory"
    assert j["last_save"]
    assert j["uptime_seconds"] >= 0


def test_export_is_full_backup(client: TestClient, admin_headers):
    rec = client.post("/tables/doctors", json={"name": "Removed"}).json()
    client.delete(f"/tables/doctors/{rec['id']}")

    r = client.get("/admin/export", headers=admin_headers)
    assert r.status_code == 200
    assert r.headers["content-disposition"].startswith("attachment")
    body = json.loads(r.content)
    assert body["version"] == "1.0.0"
    assert body["exported_by"].startswith("user_")
    data = body["data"]
    assert set(data) >= {"users", "doctors", "audit_log", "sessions"}
    assert any(d["id"] == rec["id"] and d["deleted"] for d in data["doctors"])
    assert all(u["password_hash"] for u in data["users"])


def test_export_then_import_restores_logins(client: TestClient, admin_headers, store: RecordStore):
    backup = json.loads(client.get("/admin/export", headers=admin_headers).content)["data"]

    doctor = store.find_one("users", {"username": "dr.afrah"})
    store.update("users", doctor["id"], {"password_hash": "broken"})
    r = client.post("/auth/login", json={"username": "dr.afrah", "password": DOCTOR_PASSWORD})
    assert r.status_code == 401

    r = client.post("/admin/import", json={"data": {"users": backup["users"]}}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["imported"] == {"users": 2}
    r = client.post("/auth/login", json={"username": "dr.afrah", "password": DOCTOR_PASSWORD})
    assert r.status_code == 200


def test_import_replaces_tables(client: TestClient, admin_headers, store: RecordStore):
    r = client.post(
        "/admin/import",
        json={"data": {"medical_tips": [{"id": "tip_1", "title": "Sleep"}], "doctors": []}},
        headers=admin_headers,
    )
    assert r.status_code == 200
    assert r.json()["imported"] == {"doctors": 0, "medical_tips": 1}
    assert store.stats()["doctors"] == 0
    assert [t["id"] for t in store.find("medical_tips").data] == ["tip_1"]


def test_import_rejects_bad_payload(client: TestClient, admin_headers):
    r = client.post("/admin/import", json={"data": {"nope": []}}, headers=admin_headers)
    assert r.status_code == 404
    r = client.post("/admin/import", json={"data": {"doctors": [{"name": "no id"}]}}, headers=admin_headers)
    assert r.status_code == 400
    r = client.post("/admin/import", json={"data": {"doctors": "not a list"}}, headers=admin_headers)
    assert r.status_code == 400


def test_purge(client: TestClient, admin_headers, store: RecordStore):
    rec = client.post("/tables/visitors", json={"page": "/"}).json()
    client.delete(f"/tables/visitors/{rec['id']}")
    r = client.post("/admin/tables/visitors/purge", headers=admin_headers)
    assert r.status_code == 200
    assert r.json() == {"table": "visitors", "removed": 1}
    assert store.find("visitors", include_deleted=True).total == 0


def test_reset_keeps_audit_and_reseeds(client: TestClient, admin_headers, store: RecordStore):
    client.post("/tables/doctors", json={"name": "Extra"})
    audit_before = store.stats()["audit_log"]
    r = client.post("/admin/reset", headers=admin_headers)
    assert r.status_code == 200
    tables = r.json()["tables"]
    assert tables["doctors"] == 1
    assert tables["users"] == 2
    assert tables["sessions"] == 0
    assert store.stats()["audit_log"] > audit_before
    # the admin session was cleared by the reset
    assert client.get("/auth/me", headers=admin_headers).status_code == 401
