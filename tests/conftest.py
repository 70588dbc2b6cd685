import fnmatch
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["REDIS_URL"] = ""
os.environ["ORPHAN_SWEEP_ENABLED"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.cache import CacheFacade
from app.database import Base, get_db
from app.dependencies import create_access_token
from app.models.follower import Follower
from app.models.group import Group, GroupMember
from app.models.user import User
from app.services.file_store import LocalFileStore
from app.services.follow_gate import FollowGate
from app.services.group_fanout import GroupFanout
from app.services.groups import GroupService
from app.services.message_store import MessageStore
from app.services.thread_aggregator import ThreadAggregator
from app.ws import ConnectionManager


class FakeRedis:
    """Just enough of redis.asyncio for the cache facade."""

    def __init__(self):
        self.data = {}
        self.expiry = {}
        self.published = []

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value, ex=None):
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match="*", count=None):
        for key in list(self.data):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self):
        return True

    async def publish(self, channel, message):
        self.published.append((channel, message))
        return 0

    async def aclose(self):
        pass


class BrokenRedis:
    """Every call fails, like a server that went away."""

    def __init__(self):
        self.calls = 0

    def _fail(self, *args, **kwargs):
        self.calls += 1
        raise ConnectionError("redis is down")

    async def get(self, *args, **kwargs):
        self._fail()

    async def set(self, *args, **kwargs):
        self._fail()

    async def delete(self, *args, **kwargs):
        self._fail()

    async def scan_iter(self, *args, **kwargs):
        self._fail()
        yield  # pragma: no cover

    async def ping(self):
        self._fail()


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    def notify(self, recipients, title, body, data):
        self.sent.append({
            "recipients": [u.id for u in recipients],
            "title": title,
            "body": body,
            "data": data,
        })

    async def drain(self):
        pass


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache(fake_redis):
    return CacheFacade(fake_redis, key_prefix="test:")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def file_store(tmp_path):
    return LocalFileStore(str(tmp_path / "uploads"))


@pytest.fixture
async def services(session_factory, cache, notifier, file_store):
    """Factory for service objects, each on its own fresh session.

    A new session per step mirrors one request per step and keeps
    assertions from reading stale identity-map state.
    """
    sessions = []

    class Services:
        def _session(self):
            session = session_factory()
            sessions.append(session)
            return session

        def store(self) -> MessageStore:
            session = self._session()
            return MessageStore(session, cache, FollowGate(session), notifier, file_store)

        def aggregator(self) -> ThreadAggregator:
            return ThreadAggregator(self._session(), cache)

        def fanout(self) -> GroupFanout:
            return GroupFanout(self.store())

        def groups(self) -> GroupService:
            return GroupService(self.fanout())

    yield Services()
    for session in sessions:
        await session.close()


# -- seeding helpers --------------------------------------------------------

@pytest.fixture
def make_user(session_factory):
    async def _make(username: str, fcm_tokens=None) -> User:
        async with session_factory() as session:
            user = User(username=username, handle=f"@{username}", fcm_tokens=fcm_tokens or [])
            session.add(user)
            await session.commit()
            return user
    return _make


@pytest.fixture
def follow(session_factory):
    async def _follow(follower: User, user: User) -> None:
        async with session_factory() as session:
            session.add(Follower(user_id=user.id, follower_id=follower.id))
            await session.commit()
    return _follow


@pytest.fixture
def make_group(session_factory):
    async def _make(admin: User, members, name: str = "Team") -> Group:
        async with session_factory() as session:
            ids = list(dict.fromkeys([admin.id, *[m.id for m in members]]))
            group = Group(
                name=name,
                admin_id=admin.id,
                memberships=[GroupMember(user_id=uid) for uid in ids],
            )
            session.add(group)
            await session.commit()
            return group
    return _make


@pytest.fixture
async def users(make_user, follow):
    """alice and bob follow each other; carol follows alice only; dave follows nobody."""
    alice = await make_user("alice", fcm_tokens=["token-a"])
    bob = await make_user("bob", fcm_tokens=["token-b"])
    carol = await make_user("carol")
    dave = await make_user("dave")
    await follow(alice, bob)
    await follow(bob, alice)
    await follow(carol, alice)
    return {"alice": alice, "bob": bob, "carol": carol, "dave": dave}


# -- HTTP -------------------------------------------------------------------

@pytest.fixture
def auth():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers


@pytest.fixture
async def client(session_factory, cache, notifier, file_store):
    from app.main import app

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.state.cache = cache
    app.state.notifier = notifier
    app.state.file_store = file_store
    app.state.connections = ConnectionManager()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
