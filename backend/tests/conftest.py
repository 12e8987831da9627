"""
Plote - Test Configuration and Fixtures
"""
import os
import tempfile
from typing import AsyncGenerator, Callable, Dict, Optional
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession
from faker import Faker

# Set testing environment before the app reads its settings
_TEST_ROOT = tempfile.mkdtemp(prefix="plote-tests-")
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(_TEST_ROOT, 'bootstrap.db')}"
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing'
os.environ['BCRYPT_ROUNDS'] = '4'
os.environ['RATE_LIMIT_ENABLED'] = 'false'
os.environ['LOG_FILE'] = ''
os.environ['STORAGE_MODE'] = 'local'
os.environ['UPLOAD_DIR'] = os.path.join(_TEST_ROOT, 'uploads')
os.environ['FRONTEND_URL'] = 'http://frontend.test'

from app.main import app
from app.core.config import settings
from app.core.database import Database
from app.core.security import get_password_hash
from app.models.user import User
from app.services.storage_service import BlobStore, get_storage

fake = Faker()

TEST_PASSWORD = 'testpassword123'


class MemoryBlobStore(BlobStore):
    """In-memory blob store with switches for failure injection"""

    backend = "memory"

    def __init__(self):
        super().__init__(timeout=5)
        self.blobs: Dict[str, bytes] = {}
        self.put_calls = 0
        self.fail_put_after: Optional[int] = None  # successful puts allowed before failing
        self.fail_remove = False

    async def _put(self, key, content, content_type):
        self.put_calls += 1
        if self.fail_put_after is not None and self.put_calls > self.fail_put_after:
            raise ConnectionError("simulated storage outage")
        self.blobs[key] = content

    async def _remove(self, key):
        if self.fail_remove:
            raise ConnectionError("simulated storage outage")
        self.blobs.pop(key, None)

    def url_for(self, key):
        return f"http://blobs.test/{key}"


@pytest.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """Fresh SQLite database per test"""
    db = Database.from_settings(settings, url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession, None]:
    async with database.session() as session:
        yield session


@pytest.fixture
def memory_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture
async def client(database: Database, memory_store: MemoryBlobStore) -> AsyncGenerator[AsyncClient, None]:
    """Test client wired to the per-test database and the in-memory blob store"""
    app.state.db = database
    app.dependency_overrides[get_storage] = lambda: memory_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def user_payload() -> Callable[..., dict]:
    """Registration body with unique fields; keyword overrides win"""
    def _make(**overrides) -> dict:
        data = {
            "username": fake.unique.user_name(),
            "email": fake.unique.email(),
            "password": TEST_PASSWORD,
            "mobileNumber": fake.unique.numerify("##########"),
            "college": "Government Engineering College",
            "branch": "Computer Science",
            "rollNumber": fake.unique.bothify("21CS####"),
        }
        data.update(overrides)
        return data
    return _make


async def _register(client: AsyncClient, payload: dict) -> dict:
    response = await client.post("/api/auth/register", json=payload)
    assert response.status_code == 201, response.text
    body = response.json()
    return {
        "payload": payload,
        "user": body["user"],
        "token": body["token"],
        "headers": {"Authorization": f"Bearer {body['token']}"},
    }


@pytest.fixture
async def student_a(client: AsyncClient, user_payload) -> dict:
    """Registered student with roll number R1"""
    return await _register(client, user_payload(rollNumber="R1"))


@pytest.fixture
async def student_b(client: AsyncClient, user_payload) -> dict:
    """Registered student with roll number R2"""
    return await _register(client, user_payload(rollNumber="R2"))


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Insert a user row directly"""
    async def _make(roll_number: str = "R1", **overrides) -> User:
        user = User(
            username=overrides.pop("username", fake.unique.user_name()),
            email=overrides.pop("email", fake.unique.email()),
            hashed_password=get_password_hash(TEST_PASSWORD),
            college=overrides.pop("college", "Government Engineering College"),
            branch=overrides.pop("branch", "Computer Science"),
            roll_number=roll_number,
            mobile_number=overrides.pop("mobile_number", fake.unique.numerify("##########")),
            **overrides
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user
    return _make
