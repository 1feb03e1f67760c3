"""
Shared fixtures: an in-memory mongomock database swapped in for database.db,
captured outgoing email, and users with bearer tokens for the API client.
"""
import mongomock
import pytest
from fastapi.testclient import TestClient

import database
import mailer
import main
import user_service


@pytest.fixture()
def db(monkeypatch):
    """Fresh mongomock database per test; transactions run without a session."""
    mock_db = mongomock.MongoClient()["charity_test"]
    monkeypatch.setattr(database, "db", mock_db)
    monkeypatch.setattr(database, "client", None)
    return mock_db


@pytest.fixture()
def sent_emails(monkeypatch):
    sent = []

    def fake_send(to, subject, html):
        sent.append({"to": to, "subject": subject, "html": html})
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


@pytest.fixture()
def client(db):
    with TestClient(main.app) as c:
        yield c


def make_program(title="Winter Relief", target=10000, raised=0, **extra):
    data = {
        "title": title,
        "description": f"{title} description",
        "short_description": "",
        "category": "Emergency Aid",
        "location": "Northeast Region",
        "manager": "Sarah Johnson",
        "start_date": "2024-01-01",
        "end_date": "2024-12-31",
        "target": target,
        "raised": raised,
        "volunteers": 0,
        "status": "active",
        "is_featured": False,
        "image_url": "",
        "tags": [],
    }
    data.update(extra)
    return database.create_document("programs", data)


def make_user(name="Jane Doe", email="jane@example.com", role="donor", password="secret123"):
    return user_service.create_user(name, email, main.get_password_hash(password), role)


def auth_headers(user):
    token = main.create_access_token({"sub": user["id"], "role": user["role"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def admin(db):
    return make_user("Ada Admin", "admin@example.com", role="admin")


@pytest.fixture()
def donor(db):
    return make_user("John Smith", "john@example.com", role="donor")


@pytest.fixture()
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture()
def donor_headers(donor):
    return auth_headers(donor)
