import mongomock
import pytest
from fastapi.testclient import TestClient

from backend.accounts import AccountService
from backend.config import Settings
from backend.database import ensure_indexes
from backend.main import create_app
from backend.security import PasswordHasher, TokenService
from backend.tasks import TaskRepository


@pytest.fixture()
def settings() -> Settings:
    # Minimum bcrypt cost keeps the suite fast
    return Settings(
        database_name="taskflow_test",
        secret_key="test-secret",
        bcrypt_rounds=4,
        environment="test",
        _env_file=None,
    )


@pytest.fixture()
def db(settings):
    database = mongomock.MongoClient()[settings.database_name]
    ensure_indexes(database)
    return database


@pytest.fixture()
def hasher(settings) -> PasswordHasher:
    return PasswordHasher(rounds=settings.bcrypt_rounds)


@pytest.fixture()
def tokens(settings) -> TokenService:
    return TokenService.from_settings(settings)


@pytest.fixture()
def accounts(db, hasher, tokens) -> AccountService:
    return AccountService(db, hasher, tokens)


@pytest.fixture()
def repo(db) -> TaskRepository:
    return TaskRepository(db)


@pytest.fixture()
def alice(accounts) -> dict:
    user, _ = accounts.register("Alice", "alice@example.com", "secret1")
    return user


@pytest.fixture()
def bob(accounts) -> dict:
    user, _ = accounts.register("Bob", "bob@example.com", "secret2")
    return user


@pytest.fixture()
def client(settings, db):
    app = create_app(settings, db=db)
    with TestClient(app) as c:
        yield c


def register(client, name="Alice", email="alice@example.com", password="secret1") -> dict:
    """Register through the API and return Authorization headers for the new user."""
    resp = client.post("/api/auth/register", json={"name": name, "email": email, "password": password})
    assert resp.status_code == 201, resp.text
    return {"Authorization": f"Bearer {resp.json()['token']}"}
