"""
Shared test configuration.

Settings are read once at import time, so the environment is prepared before
anything from `app` is imported.
"""
import os
import tempfile

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="media-gallery-tests-")
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["REQUIRE_EMAIL_VERIFICATION"] = "false"
os.environ.pop("RESEND_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.database import Base, get_db
from app.storage.local_storage import storage


@pytest.fixture
def db_session():
    """Fresh in-memory database per test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def upload_dir(tmp_path, monkeypatch):
    """Point the shared storage at an empty per-test directory"""
    monkeypatch.setattr(storage, "upload_dir", tmp_path)
    return tmp_path


@pytest.fixture
def client(db_session, upload_dir):
    """TestClient whose requests share the test's database session"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager: the lifespan (create_all on the real
    # engine, scheduler) stays off
    test_client = TestClient(app)
    yield test_client
    app.dependency_overrides.clear()


def register(client, name, email, password="secret123"):
    response = client.post("/auth/register", json={"name": name, "email": email, "password": password})
    assert response.status_code == 201, response.text
    # Tests authenticate explicitly with headers
    client.cookies.clear()
    return response.json()


def auth_headers(token):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin(client):
    """First registered account, which is an admin"""
    return register(client, "Admin", "admin@example.com")


@pytest.fixture
def alice(client, admin):
    return register(client, "Alice", "alice@example.com")


@pytest.fixture
def bob(client, admin):
    return register(client, "Bob", "bob@example.com")
