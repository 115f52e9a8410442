"""
NutriLens Backend: Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the test suite.
How:   Every test gets its own SQLite file database (aiosqlite, NullPool so
       concurrent ledger calls really use separate connections), a
       CreditLedger bound to it, and a temporary image store.

Fixture Hierarchy:
    Function-scoped:
    ├── db_engine / session_factory: fresh schema in tmp_path
    ├── failing_commit_factory: sessions on the same schema whose commit fails
    ├── ledger:            CreditLedger(session_factory, max_total=1000)
    ├── make_user:         inserts a user with chosen counters
    ├── temp_storage / file_service: image storage under tmp_path
    ├── mock_llm:          LLMService returning a canned Gemini answer
    ├── sample_image_bytes / gemini_answer
    └── test_client:       HTTPX AsyncClient over ASGITransport with the
                           database, ledger and analysis service overridden
"""

import json
import os
import tempfile

# Settings are read at import time, so the environment is prepared first
_TEST_ROOT = tempfile.mkdtemp(prefix="nutrilens_test_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_ROOT}/app.db"
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["STORAGE_ROOT"] = os.path.join(_TEST_ROOT, "storage")
os.environ["JWT_SECRET"] = "test-secret-with-at-least-24-characters"
os.environ["GOOGLE_CLIENT_ID"] = "test-client.apps.googleusercontent.com"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["LOG_LEVEL"] = "WARNING"

from typing import AsyncGenerator, Optional  # noqa: E402
from unittest.mock import AsyncMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.exc import OperationalError  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from nutrilens.database import Base, get_db_session  # noqa: E402
from nutrilens.models.user import User  # noqa: E402
from nutrilens.security import create_access_token, generate_api_key, hash_password  # noqa: E402
from nutrilens.services.analysis_service import AnalysisService  # noqa: E402
from nutrilens.services.credit_ledger import CreditLedger  # noqa: E402
from nutrilens.services.file_service import FileService  # noqa: E402
from nutrilens.services.llm_base import LLMService  # noqa: E402

ESTIMATE_PATH = "/api/estimate-calories"


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

def sqlite_url(path) -> str:
    return f"sqlite+aiosqlite:///{path}"


def make_engine(path):
    # timeout: concurrent writers wait on the SQLite lock instead of failing
    return create_async_engine(
        sqlite_url(path),
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = make_engine(tmp_path / "nutrilens.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


class FailingCommitSession(AsyncSession):
    """A session whose COMMIT fails, as on a lost connection or a full disk."""

    async def commit(self) -> None:
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))


@pytest.fixture
def failing_commit_factory(db_engine):
    return async_sessionmaker(db_engine, class_=FailingCommitSession, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory):
    return CreditLedger(
        session_factory,
        max_total=1000,
        endpoint_costs={ESTIMATE_PATH: 1, "/api/expensive": 5},
        history_limit=20,
        max_cas_attempts=3,
    )


@pytest.fixture
def make_user(session_factory):
    """
    Insert a user directly (bypassing the ledger) and return it.

    Usage:
        user = await make_user(credits_used=40)
    """

    async def _make(
        email: Optional[str] = None,
        name: str = "Test User",
        password: str = "secret123",
        credits_total: int = 100,
        credits_used: int = 0,
        is_admin: bool = False,
        google_id: Optional[str] = None,
    ) -> User:
        user = User(
            name=name,
            email=email or f"{generate_api_key()[:8]}@example.com",
            password_hash=hash_password(password),
            google_id=google_id,
            api_key=generate_api_key(),
            is_admin=is_admin,
            credits_total=credits_total,
            credits_used=credits_used,
        )
        async with session_factory() as session:
            async with session.begin():
                session.add(user)
        return user

    return _make


@pytest.fixture
def auth_headers():
    """Bearer header for a user: headers=auth_headers(user)."""

    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


# ══════════════════════════════════════════════════════════════════════════
# Files and AI
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def temp_storage(tmp_path):
    storage_dir = tmp_path / "storage"
    storage_dir.mkdir()
    return str(storage_dir)


@pytest.fixture
def file_service(temp_storage):
    return FileService(storage_root=temp_storage)


@pytest.fixture
def sample_image_bytes():
    """
    Minimal JPEG bytes (SOI + JFIF header + EOI).

    Not a real photograph; the mocked LLM never looks at it.
    """
    return (
        b"\xff\xd8\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"
        b"\xff\xd9"
    )


@pytest.fixture
def gemini_answer():
    """A fenced Gemini answer in the shape the nutrition prompt asks for."""
    body = {
        "foodItems": [
            {
                "name": "Grilled chicken breast",
                "calories": "Approx. 280-320 kcal",
                "proteinGrams": "Approx. 31.6g",
                "carbsGrams": "0g",
                "fatGrams": "7g",
                "fiberGrams": "N/A",
                "sugarGrams": "0g",
                "sodiumMg": "400mg",
                "healthScore": 8,
                "dietaryCategory": ["High-protein", "Low-carb"],
                "potentialAllergens": [],
            },
            {
                "name": "Steamed rice",
                "calories": "Approx. 200 kcal",
                "proteinGrams": "4g",
                "carbsGrams": "45g",
                "fatGrams": "0.4g",
                "fiberGrams": "0.6g",
                "sugarGrams": "0g",
                "sodiumMg": "5mg",
                "healthScore": 6,
                "dietaryCategory": ["Vegan"],
                "potentialAllergens": [],
            },
        ],
        "totalCalories": "Approx. 500-600 kcal",
        "totalProteinGrams": "35.6g",
        "totalCarbsGrams": "45g",
        "totalFatGrams": "7.4g",
        "totalFiberGrams": "0.6g",
        "totalSugarGrams": "0g",
        "totalSodiumMg": "405mg",
        "overallHealthScore": 7,
        "mealType": "Lunch",
        "caloriesDensity": "Medium density (1.4 kcal/g)",
        "portionRecommendation": "One plate is a balanced lunch portion.",
        "description": "Grilled chicken with steamed white rice.",
    }
    return "```json\n" + json.dumps(body, indent=2) + "\n```"


@pytest.fixture
def mock_llm(gemini_answer):
    llm = AsyncMock(spec=LLMService)
    llm.analyze_image.return_value = gemini_answer
    llm.health_check.return_value = True
    return llm


@pytest.fixture
def analysis_service(mock_llm, file_service):
    return AnalysisService(llm=mock_llm, files=file_service)


# ══════════════════════════════════════════════════════════════════════════
# HTTP client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory, ledger, analysis_service) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTPX AsyncClient talking to the FastAPI app in-process.

    Usage:
        async def test_profile(test_client, make_user, auth_headers):
            user = await make_user()
            response = await test_client.get("/api/users/profile", headers=auth_headers(user))
    """
    from nutrilens.dependencies import get_analysis_service, get_credit_ledger
    from nutrilens.main import app

    async def _db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = _db_session
    app.dependency_overrides[get_credit_ledger] = lambda: ledger
    app.dependency_overrides[get_analysis_service] = lambda: analysis_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
