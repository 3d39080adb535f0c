import os
import tempfile
from datetime import datetime, timedelta, timezone

import mongomock
import pytest
from fastapi.testclient import TestClient

os.environ["DATABASE_URL"] = "mongodb://localhost:27017"
os.environ["DATABASE_NAME"] = "execinnov_test"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="execinnov-uploads-")
os.environ.pop("EMAIL_USER", None)
os.environ.pop("OPENAI_API_KEY", None)

with mongomock.patch(servers=(("localhost", 27017),)):
    import database
    import mailer
    import main
    from security import create_access_token, get_password_hash

PASSWORD = "secret123"


def minutes_ago(minutes: float) -> datetime:
    # stored the way Mongo stores them: naive UTC
    return (datetime.now(timezone.utc) - timedelta(minutes=minutes)).replace(tzinfo=None)


@pytest.fixture
def db():
    yield database.db
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)


@pytest.fixture
def client(db):
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_send(to, subject, body):
        sent.append({"to": to, "subject": subject, "body": body})
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


@pytest.fixture
def make_user(db):
    def _make(email, name="Test User", is_admin=False, subscription="Free", password=PASSWORD):
        user_id = database.create_document("user", {
            "name": name,
            "email": email,
            "password_hash": get_password_hash(password),
            "image": "/media/avatar.avif",
            "is_admin": is_admin,
            "subscription": subscription,
            "email_verified": True,
        })
        token = create_access_token({"sub": user_id, "is_admin": is_admin})
        return {
            "id": user_id,
            "email": email,
            "name": name,
            "headers": {"Authorization": f"Bearer {token}"},
        }
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin@example.com", name="Ada Admin", is_admin=True)


@pytest.fixture
def user(make_user):
    return make_user("user@example.com", name="Uma User")


@pytest.fixture
def category(client, admin):
    res = client.post("/categories", json={"name": "Strategy"}, headers=admin["headers"])
    assert res.status_code == 201
    return res.json()


def tool_body(category_id, **overrides):
    body = {
        "title": "Use Case Finder",
        "description": "Identify concrete use cases",
        "system_instructions": "You are an expert technology strategist.",
        "questions": [
            {"question": "What technology?"},
            {"question": "Which sector?", "max_ans_length": 20},
        ],
        "category_id": category_id,
    }
    body.update(overrides)
    return body
