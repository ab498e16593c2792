import os
import sys
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import text

# Ensure project root on path before importing app modules
project_root = Path(__file__).resolve().parents[1]
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

# Configure the app to use a local SQLite database during tests
_test_db_path = project_root / "test.db"
os.environ["APP_DATABASE_URL"] = f"sqlite+aiosqlite:///{_test_db_path.as_posix()}"
os.environ["APP_DEBUG"] = "false"
os.environ["APP_KMS_KEY_ID"] = "alias/bandhan-test"
os.environ["APP_DIGILOCKER_CLIENT_ID"] = "test-client"
os.environ["APP_DIGILOCKER_CLIENT_SECRET"] = "test-secret"
os.environ["APP_DIGILOCKER_REDIRECT_URI"] = "http://test/auth/digilocker/callback"
os.environ["APP_LOCATION_CLEANUP_ENABLED"] = "false"

# Start each test session from a clean database file
if _test_db_path.exists():
    _test_db_path.unlink()


async def _clear_database(session) -> None:
    """Remove all data from the database between tests."""
    from app.models import Base

    await session.execute(text("PRAGMA foreign_keys=OFF"))
    for table in reversed(Base.metadata.sorted_tables):
        await session.execute(table.delete())
    await session.commit()
    await session.execute(text("PRAGMA foreign_keys=ON"))


class FakeKMS:
    """Stands in for the boto3 KMS client: the 'wrapped' key is the key itself."""

    def __init__(self):
        self.generated = 0

    def generate_data_key(self, KeyId, KeySpec):
        self.generated += 1
        key = os.urandom(32)
        return {"Plaintext": key, "CiphertextBlob": b"wrapped:" + key, "KeyId": KeyId}

    def decrypt(self, CiphertextBlob):
        return {"Plaintext": CiphertextBlob[len(b"wrapped:"):]}


@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create tables before each test and wipe them afterwards."""
    from app.database import AsyncSessionLocal, create_tables
    from app.services import otp_service

    await create_tables()
    yield
    async with AsyncSessionLocal() as session:
        await _clear_database(session)
    otp_service._resend_timers.clear()


@pytest_asyncio.fixture
async def test_session():
    """Provide an async database session to tests that need direct access."""
    from app.database import AsyncSessionLocal

    async with AsyncSessionLocal() as session:
        yield session


@pytest_asyncio.fixture
async def client():
    from app.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides = {}


@pytest.fixture
def kms_client():
    return FakeKMS()


@pytest.fixture
def fake_kms():
    """Route every KMS call made through the API to an in-memory fake."""
    from app.main import app
    from app.services.encryption_service import KMSEncryptionService, get_encryption_service

    kms = FakeKMS()
    service = KMSEncryptionService(key_id="alias/bandhan-test", client=kms)
    app.dependency_overrides[get_encryption_service] = lambda: service
    yield kms
    app.dependency_overrides.pop(get_encryption_service, None)


@pytest_asyncio.fixture
async def make_user(test_session):
    """Factory: persist a user and return `(user, auth_headers)`."""
    from app.models import User
    from app.services.jwt_service import JWTService

    counter = {"n": 0}

    async def _make(**fields):
        counter["n"] += 1
        defaults = {
            "phone": f"+9198765{counter['n']:05d}",
            "is_phone_verified": True,
            "verification_level": 1,
        }
        defaults.update(fields)
        user = User(**defaults)
        test_session.add(user)
        await test_session.commit()
        await test_session.refresh(user)
        token = JWTService.create_token(user)
        return user, {"Authorization": f"Bearer {token}"}

    return _make
