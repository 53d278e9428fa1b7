import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
from database.db import GatepassStore


@pytest.fixture()
def store(tmp_path):
    gatepass_store = GatepassStore(tmp_path / "gatepass_store_test.db")
    gatepass_store.create_tables()
    yield gatepass_store
    gatepass_store.close()


@pytest.fixture()
def people(store):
    """One account per role, created straight through the store."""

    def _make(role: str, email: str, full_name: str) -> dict:
        return store.create_user(
            email=email,
            password="secret123",
            full_name=full_name,
            role=role,
            hostel="H1",
            roll_no="R-001" if role == "STUDENT" else None,
            parent_contact="9000000001" if role == "STUDENT" else None,
        )

    return {
        "student": _make("STUDENT", "student@hostel.local", "Asha Student"),
        "other_student": _make("STUDENT", "other@hostel.local", "Ravi Student"),
        "attendant": _make("HOSTEL_ATTENDANT", "attendant@hostel.local", "Meena Attendant"),
        "superintendent": _make("SUPERINTENDENT", "super@hostel.local", "Kiran Superintendent"),
        "guard": _make("SECURITY_GUARD", "guard@hostel.local", "Gopal Guard"),
    }


@pytest.fixture()
def client(tmp_path):
    app = main.create_app(db_path=tmp_path / "gatepass_api_test.db")
    with TestClient(app) as c:
        yield c


def _login(client: TestClient, email: str, password: str) -> dict:
    res = client.post("/auth/login", json={"email": email, "password": password})
    assert res.status_code == 200, res.text
    return {"Authorization": f"Bearer {res.json()['access_token']}"}


@pytest.fixture()
def admin_headers(client):
    return _login(client, config.ADMIN_EMAIL, config.ADMIN_PASSWORD)


@pytest.fixture()
def api_people(client, admin_headers):
    """Headers and ids for a student, attendant, superintendent and guard."""
    out: dict[str, dict] = {}

    staff = [
        ("attendant", "HOSTEL_ATTENDANT", "attendant@hostel.local"),
        ("superintendent", "SUPERINTENDENT", "super@hostel.local"),
        ("guard", "SECURITY_GUARD", "guard@hostel.local"),
    ]
    for key, role, email in staff:
        res = client.post(
            "/admin/staff",
            json={
                "email": email,
                "password": "secret123",
                "full_name": key.title(),
                "role": role,
                "hostel": "H1",
            },
            headers=admin_headers,
        )
        assert res.status_code == 201, res.text
        out[key] = {"id": res.json()["user"]["id"], "headers": _login(client, email, "secret123")}

    for key, email in (("student", "student@hostel.local"), ("other_student", "other@hostel.local")):
        res = client.post(
            "/auth/register",
            json={
                "email": email,
                "password": "secret123",
                "full_name": key.replace("_", " ").title(),
                "hostel": "H1",
                "roll_no": "21CS001",
                "parent_contact": "9000000001",
            },
        )
        assert res.status_code == 201, res.text
        body = res.json()
        out[key] = {
            "id": body["user"]["id"],
            "headers": {"Authorization": f"Bearer {body['access_token']}"},
        }

    return out
