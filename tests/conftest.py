# tests/conftest.py
import os
import tempfile

os.environ.setdefault("SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="petcare-uploads-")

import itertools  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from petcare.config import get_settings  # noqa: E402
from petcare.database import Base, get_db  # noqa: E402
from petcare.main import app  # noqa: E402
from petcare.services.knowledge_base import KnowledgeBase  # noqa: E402
from petcare.timeutils import utcnow  # noqa: E402

PASSWORD = "correct-horse-1"
_counter = itertools.count(1)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
async def client(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.knowledge_base = KnowledgeBase.load(get_settings().knowledge_base_path)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def future_slot(days: int = 3, hour: int = 10) -> str:
    moment = (utcnow() + timedelta(days=days)).replace(hour=hour, minute=0, second=0, microsecond=0)
    return moment.isoformat()


async def _login(client: AsyncClient, email: str, role: str) -> str:
    response = await client.post("/api/auth/login", json={"email": email, "password": PASSWORD, "role": role})
    assert response.status_code == 200, response.text
    return response.json()["token"]


@pytest.fixture
def register_owner(client):
    """Register and log in a pet owner; returns {id, email, token, headers}."""
    async def _register(**overrides):
        n = next(_counter)
        payload = {
            "firstName": "Olivia",
            "lastName": f"Owner{n}",
            "address": "12 Elm Street",
            "phoneNumber": f"555-01{n:02d}",
            "email": f"owner{n}@example.com",
            "password": PASSWORD,
        }
        payload.update(overrides)
        response = await client.post("/api/owners/register", json=payload)
        assert response.status_code == 201, response.text
        owner = response.json()["owner"]
        token = await _login(client, payload["email"], "owner")
        return {"id": owner["id"], "email": payload["email"], "token": token, "headers": auth_headers(token)}
    return _register


@pytest.fixture
def register_primary_vet(client):
    """Register a Primary vet (with an auto-created clinic) and log in."""
    async def _register(**overrides):
        n = next(_counter)
        payload = {
            "firstName": "Paula",
            "lastName": f"Primary{n}",
            "email": f"primary{n}@example.com",
            "password": PASSWORD,
            "phoneNumber": f"555-02{n:02d}",
            "veterinaryId": f"LIC-P-{n}",
            "specialization": "General Practice",
            "isPrimaryVet": True,
        }
        payload.update(overrides)
        response = await client.post("/api/vets/register", json=payload)
        assert response.status_code == 201, response.text
        vet = response.json()["vet"]
        token = await _login(client, payload["email"], "vet")
        return {
            "id": vet["id"],
            "email": payload["email"],
            "clinic_id": vet["currentActiveClinicId"],
            "token": token,
            "headers": auth_headers(token),
        }
    return _register


@pytest.fixture
def add_clinic_vet(client):
    """Create a Full or Normal Access vet in the Primary vet's clinic and log in."""
    async def _add(primary: dict, access_level: str = "Normal Access", clinic_id: str = None):
        n = next(_counter)
        payload = {
            "firstName": "Victor",
            "lastName": f"Vet{n}",
            "email": f"vet{n}@example.com",
            "password": PASSWORD,
            "phoneNumber": f"555-03{n:02d}",
            "veterinaryId": f"LIC-V-{n}",
            "clinicId": clinic_id or primary["clinic_id"],
            "accessLevel": access_level,
        }
        response = await client.post("/api/vets/sub-account", json=payload, headers=primary["headers"])
        assert response.status_code == 201, response.text
        vet = response.json()["vet"]
        token = await _login(client, payload["email"], "vet")
        return {
            "id": vet["id"],
            "email": payload["email"],
            "clinic_id": payload["clinicId"],
            "token": token,
            "headers": auth_headers(token),
        }
    return _add


@pytest.fixture
def create_pet(client):
    async def _create(owner: dict, **overrides):
        payload = {"name": "Rex", "species": "Dog", "breed": "Beagle", "gender": "Male", "weight": 12.5}
        payload.update(overrides)
        response = await client.post("/api/pets", json=payload, headers=owner["headers"])
        assert response.status_code == 201, response.text
        return response.json()["pet"]
    return _create


@pytest.fixture
def approved_pet(client, create_pet):
    """A pet registered with and approved by the vet's clinic."""
    async def _approved(owner: dict, vet: dict, **overrides):
        pet = await create_pet(owner, **overrides)
        response = await client.post(
            f"/api/pets/{pet['id']}/request-registration",
            json={"clinicId": vet["clinic_id"]},
            headers=owner["headers"],
        )
        assert response.status_code == 200, response.text
        response = await client.patch(f"/api/pets/{pet['id']}/approve", headers=vet["headers"])
        assert response.status_code == 200, response.text
        return response.json()["pet"]
    return _approved
