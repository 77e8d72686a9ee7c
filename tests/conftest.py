import os

# The module-level app in main must not reach for a real MongoDB
os.environ.setdefault("USE_IN_MEMORY_DB", "true")

import pytest
from fastapi.testclient import TestClient

from database import InMemoryDocumentStore
from main import create_app
from settings import Settings

TEST_SECRET = "test-secret-for-civiclens-suite"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        USE_IN_MEMORY_DB=True,
        JWT_SECRET=TEST_SECRET,
        BCRYPT_ROUNDS=4,
        UPLOAD_DIR=str(tmp_path / "uploads"),
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def app(settings, store):
    return create_app(settings, store)


@pytest.fixture
def client(app):
    """Create a test client; entering it runs the app lifespan."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def register(client):
    """Register a user through the API and return the response payload."""
    def _register(name="Asha", email="asha@example.com", password="s3cret-pass"):
        response = client.post(
            "/api/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        assert response.status_code == 200, response.text
        return response.json()
    return _register

