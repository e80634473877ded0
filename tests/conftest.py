import asyncio
import copy
import heapq
import inspect
import itertools
import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, List, Optional

import pytest
import sqlalchemy as sa
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure the repository root is on sys.path so tests can import the pressroom package
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

os.environ.setdefault('JWT_SECRET', 'test-jwt-secret')
os.environ.setdefault('PRESSROOM_AUTO_CREATE_SCHEMA', '0')

from pressroom import config as app_config  # noqa: E402
from pressroom.auth import create_session_token  # noqa: E402
from pressroom.db import config as db_config  # noqa: E402
from pressroom.db.models import Base, User, UserRole  # noqa: E402
from pressroom.db.session import configure_session_factory  # noqa: E402


try:
    import pytest_asyncio  # type: ignore  # noqa: F401
except ImportError:

    @pytest.hookimpl(tryfirst=True)
    def pytest_pyfunc_call(pyfuncitem):
        """Run ``async def`` tests via ``asyncio.run`` when pytest-asyncio is missing."""

        if inspect.iscoroutinefunction(pyfuncitem.obj):
            testargs = {
                name: pyfuncitem.funcargs[name]
                for name in pyfuncitem._fixtureinfo.argnames
            }
            asyncio.run(pyfuncitem.obj(**testargs))
            return True
        return None


@pytest.fixture(autouse=True)
def _reset_settings_caches() -> Iterator[None]:
    """Drop cached settings so monkeypatched environment variables apply."""

    app_config.get_auth_settings.cache_clear()
    app_config.get_stream_settings.cache_clear()
    app_config.get_dashboard_settings.cache_clear()
    db_config.get_database_settings.cache_clear()
    yield
    app_config.get_auth_settings.cache_clear()
    app_config.get_stream_settings.cache_clear()
    app_config.get_dashboard_settings.cache_clear()
    db_config.get_database_settings.cache_clear()


@dataclass
class DatabaseContext:
    """Holds state for the ephemeral in-memory SQLite database."""

    engine: sa.engine.Engine
    session_factory: sessionmaker

    def make_session(self) -> Session:
        """Return a new SQLAlchemy session bound to the in-memory engine."""

        return self.session_factory()


@pytest.fixture(scope='function')
def in_memory_db() -> Iterator[DatabaseContext]:
    """Provide an isolated in-memory SQLite database for each test."""

    engine = sa.create_engine(
        'sqlite+pysqlite:///:memory:',
        future=True,
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
        future=True,
    )
    configure_session_factory(session_factory)
    try:
        yield DatabaseContext(engine=engine, session_factory=session_factory)
    finally:
        configure_session_factory(None)
        engine.dispose()


@pytest.fixture(scope='function')
def db_session(in_memory_db: DatabaseContext) -> Iterator[Session]:
    """Yield a SQLAlchemy session tied to the in-memory database."""

    session = in_memory_db.make_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope='function')
def api_client(in_memory_db: DatabaseContext) -> Iterator[TestClient]:
    """Yield a FastAPI test client bound to the in-memory database."""

    from pressroom import main

    client = TestClient(main.app)
    try:
        yield client
    finally:
        client.close()


@pytest.fixture
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory that inserts and commits a user."""

    counter = itertools.count(1)

    def _make_user(
        name: Optional[str] = None,
        *,
        role: str = UserRole.USER.value,
        email: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> User:
        index = next(counter)
        user = User(
            name=name or f'user{index}',
            email=email or f'user{index}@pressroom.test',
            role=role,
            created_at=created_at or datetime.now(timezone.utc),
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture
def admin_user(make_user) -> User:
    """Create a default administrator account for tests."""

    return make_user('Admin', role=UserRole.ADMIN.value, email='admin@pressroom.test')


def session_token(user_id: int, **kwargs: Any) -> str:
    return create_session_token(user_id, **kwargs)


class VirtualClock:
    """Deterministic replacement for ``asyncio.sleep`` driven by ``advance``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._sleepers: List[tuple] = []
        self._seq = itertools.count()

    async def sleep(self, delay: float) -> None:
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + delay, next(self._seq), future))
        await future

    async def settle(self, rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self.now = deadline
            if not future.done():
                future.set_result(None)
            await self.settle()
        self.now = target


class RecordingSink:
    """Frame sink that records what the session pushed and how often it closed."""

    def __init__(self) -> None:
        self.frames: List[str] = []
        self.close_calls = 0
        self.closed = False

    def send(self, frame: str) -> bool:
        if self.closed:
            return False
        self.frames.append(frame)
        return True

    def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeSnapshotSource:
    """Async snapshot source whose value and failure mode tests control."""

    def __init__(self, value: Any) -> None:
        self.value = value
        self.error: Optional[BaseException] = None
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return copy.deepcopy(self.value)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
