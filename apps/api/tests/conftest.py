import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from config import settings
from database import Base
from main import app
from routers import rate_limit


@pytest.fixture(autouse=True)
def reset_local_rate_limit_counters():
    """Keep in-memory rate-limit state isolated between tests."""
    previous = getattr(app.state, "disable_rate_limits", False)
    app.state.disable_rate_limits = True
    rate_limit.reset_fallback_windows()
    yield
    rate_limit.reset_fallback_windows()
    app.state.disable_rate_limits = previous


@pytest.fixture(autouse=True)
def default_credit_policy(monkeypatch):
    """Pin the credit policy so a local .env cannot change expectations."""
    monkeypatch.setattr(settings, "DEFAULT_INITIAL_CREDITS", 50)
    monkeypatch.setattr(settings, "CREDITS_AUTO_INITIALIZE", True)
    monkeypatch.setattr(settings, "CREDIT_COST_ANALYSIS", 5)
    monkeypatch.setattr(settings, "CREDIT_COST_CHAT", 1)
    monkeypatch.setattr(settings, "OPENROUTER_API_KEY", "")
    monkeypatch.setattr(settings, "SIMULATED_PAYMENT_DELAY_SECONDS", 0.0)


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """File-backed SQLite so concurrent sessions use separate connections."""
    db_path = tmp_path / "credit_ledger.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield maker
    await engine.dispose()
