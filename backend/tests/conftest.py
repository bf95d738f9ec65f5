import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ.setdefault("AWS_ENDPOINT_URL", "http://localhost:9000")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "test")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "test")
os.environ.setdefault("OPENAI_API_KEY", "sk-test")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-with-at-least-32-bytes!")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from mealapp.config import settings
from mealapp.exceptions import SignedUrlError
from mealapp.models import Base


class DummySigner:
    def __init__(self, broken_prefix="broken/"):
        self.broken_prefix = broken_prefix
        self.calls = []

    def sign(self, storage_path):
        self.calls.append(storage_path)
        if not storage_path or storage_path.startswith(self.broken_prefix):
            raise SignedUrlError(f"failed to sign url: {storage_path}")
        return f"https://storage.test/signed/{storage_path}?token=abc"


class DummyAnalyzer:
    def __init__(self, default=None, by_path=None, error=None):
        self.default = default if default is not None else {}
        self.by_path = by_path or {}
        self.error = error
        self.calls = []

    async def analyze(self, image_url):
        self.calls.append(image_url)
        if self.error is not None:
            raise self.error
        for path, data in self.by_path.items():
            if f"/signed/{path}?" in image_url:
                return data
        return self.default


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def cfg():
    return settings.model_copy(update={"ANALYZE_BATCH_SIZE": 5, "PROCESSING_LEASE_SECONDS": 900})


@pytest.fixture
def signer():
    return DummySigner()


@pytest.fixture
def make_analyzer():
    return DummyAnalyzer
