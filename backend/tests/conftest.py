import pytest
from fastapi.testclient import TestClient

from finance_api.auth import Principal
from finance_api.config import Settings
from finance_api.main import create_app
from finance_api.persistence import InMemoryPersistence, SqlPersistence


@pytest.fixture
def app():
    return create_app(Settings(storage_backend="memory"), InMemoryPersistence())


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


def register(client: TestClient, email: str, password: str = "Secret123!", name: str = "Tester") -> dict:
    res = client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
    assert res.status_code == 201
    body = res.json()
    return {"Authorization": f"Bearer {body['token']}"}


@pytest.fixture
def auth_headers(client: TestClient) -> dict:
    return register(client, "alice@example.com", name="Alice")


@pytest.fixture
def other_headers(client: TestClient) -> dict:
    return register(client, "bob@example.com", name="Bob")


@pytest.fixture(params=["memory", "sql"])
def persistence(request):
    if request.param == "memory":
        backend = InMemoryPersistence()
    else:
        backend = SqlPersistence("sqlite://")
    for user_id in ("alice", "bob"):
        backend.ensure_user(Principal(user_id=user_id, email=f"{user_id}@example.com"))
    return backend
