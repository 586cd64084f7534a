import pytest
from fastapi.testclient import TestClient

from config import Settings
from dependencies import limiter
from main import create_app
from task_repository import TaskRepository


@pytest.fixture()
def settings(tmp_path):
    # Fresh SQLite file and upload dir per test; cheap bcrypt rounds.
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'tasks.db'}",
        secret_key="test-secret",
        upload_dir=str(tmp_path / "uploads"),
        bcrypt_rounds=4,
        log_level="WARNING",
    )


@pytest.fixture()
def app(settings):
    # The limiter is module level; earlier tests must not eat the login and register budget.
    limiter.reset()
    return create_app(settings)


@pytest.fixture()
def context(app):
    return app.state.context


@pytest.fixture()
def make_client(app):
    """Each client keeps its own cookie jar, i.e. its own logged-in user."""
    def _make():
        # Host header has to pass TrustedHostMiddleware
        return TestClient(app, base_url="http://localhost:8000")
    return _make


@pytest.fixture()
def client(make_client):
    return make_client()


def register(client, username="alice", email=None, password="secret1"):
    email = email or f"{username}@x.com"
    return client.post("/api/auth/register", json={"username": username, "email": email, "password": password})


@pytest.fixture()
def alice(make_client):
    c = make_client()
    assert register(c, "alice").status_code == 201
    return c


@pytest.fixture()
def bob(make_client):
    c = make_client()
    assert register(c, "bob").status_code == 201
    return c


@pytest.fixture()
def create_orphan(context):
    """Insert a task without owner, like rows created before per-user tasks."""
    def _create(title="Legacy task", status="pending"):
        with context.session() as db:
            return TaskRepository(db).create(owner_id=None, title=title, status=status).id
    return _create


@pytest.fixture()
def anyio_backend():
    return "asyncio"
