import os

os.environ["JWT_SECRET"] = "test-secret"
os.environ.pop("FAST2SMS_API_KEY", None)
os.environ.pop("SMTP_HOST", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import storage
from main import app

VENDOR = {
    "email": "studio@example.com",
    "password": "s3cretpass",
    "phone": "9876543210",
    "firstName": "Asha",
    "lastName": "Rao",
    "businessName": "Asha Studios",
    "city": "Pune",
    "address": "12 MG Road",
    "serviceCategories": ["Photography"],
}


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    client = mongomock.MongoClient()
    monkeypatch.setattr(database, "client", client)
    monkeypatch.setattr(database, "db", client["vendor_marketplace_test"])
    monkeypatch.setattr(database, "TRANSACTIONS_ENABLED", False)
    database.ensure_indexes()
    yield database.db


@pytest.fixture
def uploads(monkeypatch):
    """Replace the blob store; returns the list of stored paths."""
    stored = []

    def fake_upload(content, path, content_type="application/octet-stream", bucket=None):
        stored.append(path)
        return f"https://cdn.test/{path}"

    monkeypatch.setattr(storage, "upload_file", fake_upload)
    return stored


@pytest.fixture
def client():
    return TestClient(app)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def register(client):
    def _register(**overrides):
        body = {**VENDOR, **overrides}
        resp = client.post("/api/auth/register-vendor", json=body)
        assert resp.status_code == 201, resp.text
        return resp.json()

    return _register


@pytest.fixture
def phone_login(client, mongo):
    """Log in through the OTP flow; returns the login response body."""

    def _login(phone="9123456780", role="user"):
        assert client.post("/api/auth/send-otp", json={"phone": phone}).status_code == 200
        code = mongo["otps"].find_one({"identifier": phone}, sort=[("created_at", -1), ("_id", -1)])["code"]
        resp = client.post("/api/auth/login", json={"phone": phone, "otp": code, "role": role})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _login
