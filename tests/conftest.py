import mongomock
import pytest
from fastapi.testclient import TestClient

from database import create_document, ensure_indexes, get_db
from main import app
from schemas import Circle, ProfileVisibility, User


@pytest.fixture
def db():
    database = mongomock.MongoClient().mindbridge_test
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(display_name="User", interests=None, allow_messages=True):
        counter["n"] += 1
        user = User(
            email=f"user{counter['n']}@example.com",
            password_hash="not-a-real-hash",
            display_name=display_name,
            interests=interests or [],
            profile_visibility=ProfileVisibility(allow_messages=allow_messages),
        )
        return create_document("user", user, database=db)

    return _make


@pytest.fixture
def make_circle(db):
    def _make(owner_id, title, tags=None, description=None, visibility="public", members=None):
        circle = Circle(
            title=title,
            description=description,
            tags=tags or [],
            visibility=visibility,
            members=[owner_id] + list(members or []),
            admins=[owner_id],
        )
        return create_document("circle", circle, database=db)

    return _make


@pytest.fixture
def signup(client):
    counter = {"n": 0}

    def _signup(display_name="Member", email=None, password="secret123"):
        counter["n"] += 1
        email = email or f"member{counter['n']}@example.com"
        res = client.post("/auth/register", json={"email": email, "password": password, "display_name": display_name})
        assert res.status_code == 200, res.text
        body = res.json()
        return {"id": body["user"]["id"], "headers": {"Authorization": f"Bearer {body['token']}"}}

    return _signup
