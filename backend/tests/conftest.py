"""
Passport Portal - Test Configuration and Fixtures
"""
import os
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession
from unittest.mock import MagicMock
from faker import Faker

# Set testing environment
os.environ['ENVIRONMENT'] = 'testing'
os.environ['DATABASE_URL'] = 'sqlite+aiosqlite:///./test_passport_portal.db'
os.environ['JWT_SECRET_KEY'] = 'test-jwt-secret-key-for-testing'
os.environ['STORAGE_PUBLIC_BASE_URL'] = 'https://storage.test'

from passport_portal.main import app
from passport_portal.core.database import Base, get_engine, get_session_local
from passport_portal.core.exceptions import S3DeleteError, S3PresignError, S3UploadError
from passport_portal.core.security import create_access_token
from passport_portal.models import PassportApplication, User, UserRole
from passport_portal.services.credential_cache import credential_registry
from passport_portal.services.document_registry import document_registry
from passport_portal.services.storage_service import StorageService, StoredObject

fake = Faker()


class InMemoryObjectStore(StorageService):
    """Object store double keeping objects in a dict"""

    def __init__(self):
        super().__init__(client=MagicMock(), bucket_name="passport-documents")
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_on: set = set()
        self.unsignable: set = set()
        self._signatures = 0

    async def put(self, path: str, data: bytes, content_type: str) -> str:
        self.calls.append(("put", path))
        if "put" in self.fail_on:
            raise S3UploadError(path, "simulated outage")
        self.objects[path] = (data, content_type)
        return path

    async def remove(self, paths: List[str]) -> None:
        self.calls.append(("remove", ",".join(paths)))
        if "remove" in self.fail_on:
            raise S3DeleteError(paths, "simulated outage")
        for path in paths:
            self.objects.pop(path, None)

    async def issue_timed_access(self, path: str, ttl_seconds: Optional[int] = None) -> str:
        self.calls.append(("sign", path))
        if "sign" in self.fail_on or path in self.unsignable:
            raise S3PresignError(path, "simulated outage")
        self._signatures += 1
        return f"https://signed.test/passport-documents/{path}?ttl={ttl_seconds}&sig={self._signatures}"

    async def list_objects(self, prefix: str) -> List[StoredObject]:
        self.calls.append(("list", prefix))
        return [
            StoredObject(path=path, size=len(data))
            for path, (data, _) in sorted(self.objects.items())
            if path.startswith(prefix)
        ]

    def calls_of(self, operation: str) -> List[str]:
        return [path for op, path in self.calls if op == operation]


@pytest.fixture
def object_store(monkeypatch) -> InMemoryObjectStore:
    """Swap the shared storage gateway for an in-memory double"""
    store = InMemoryObjectStore()
    monkeypatch.setattr(document_registry, "storage", store)
    monkeypatch.setattr(credential_registry, "storage", store)
    monkeypatch.setattr(credential_registry, "_caches", {})
    return store


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test"""
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with get_session_local()() as session:
        yield session

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Test client against the ASGI app"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac


async def _create_user(db_session: AsyncSession, role: UserRole) -> User:
    user = User(
        email=fake.unique.email(),
        first_name=fake.first_name(),
        last_name=fake.last_name(),
        role=role,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest_asyncio.fixture
async def applicant_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, UserRole.APPLICANT)


@pytest_asyncio.fixture
async def staff_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, UserRole.STAFF)


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _create_user(db_session, UserRole.ADMIN)


@pytest_asyncio.fixture
async def application(db_session: AsyncSession, applicant_user: User) -> PassportApplication:
    """Application with no documents uploaded"""
    record = PassportApplication(
        user_id=applicant_user.id,
        first_middle_names=f"{fake.first_name()} {fake.first_name()}",
        surname=fake.last_name(),
    )
    db_session.add(record)
    await db_session.commit()
    await db_session.refresh(record)
    return record


def _headers_for(user: User) -> dict:
    token = create_access_token({
        'sub': str(user.id),
        'email': user.email,
        'role': user.role.value
    })
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def staff_auth_headers(staff_user: User) -> dict:
    return _headers_for(staff_user)


@pytest.fixture
def admin_auth_headers(admin_user: User) -> dict:
    return _headers_for(admin_user)


@pytest.fixture
def applicant_auth_headers(applicant_user: User) -> dict:
    return _headers_for(applicant_user)
