import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from markshelf import create_app
from markshelf.client.broadcast import BroadcastHub
from markshelf.client.models import Bookmark, ChangePage, Identity, Session
from markshelf.config import TestConfig
from markshelf.errors import PermissionDenied
from markshelf.extensions import db


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def flask_transport(flask_client) -> httpx.MockTransport:
    """Route httpx requests into a Flask test client."""

    def handler(request: httpx.Request) -> httpx.Response:
        headers = {
            key: value
            for key, value in request.headers.items()
            if key.lower() not in {"host", "content-length"}
        }
        response = flask_client.open(
            request.url.raw_path.decode("ascii"),
            method=request.method,
            headers=headers,
            data=request.content,
        )
        return httpx.Response(
            response.status_code,
            headers=list(response.headers.items()),
            content=response.get_data(),
        )

    return httpx.MockTransport(handler)


@pytest.fixture
def transport(client):
    return flask_transport(client)


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


def make_session(owner_id: str = "owner-1", token: str = "token-1") -> Session:
    return Session(identity=Identity(id=owner_id), access_token=token)


class FakeStore:
    def __init__(self):
        self.rows: list[Bookmark] = []
        self.select_calls = 0
        self.insert_calls = 0
        self.delete_calls = 0
        self.select_error: Exception | None = None
        self.insert_error: Exception | None = None
        self.insert_gate: asyncio.Event | None = None
        self.held_selects: list[asyncio.Future] | None = None
        self._counter = 0

    def seed(self, owner_id: str, title: str, url: str) -> Bookmark:
        self._counter += 1
        row = Bookmark(
            id=f"bm-{self._counter}",
            title=title,
            url=url,
            created_at=BASE_TIME + timedelta(minutes=self._counter),
            owner=owner_id,
        )
        self.rows.append(row)
        return row

    def owned(self, owner_id: str) -> list[Bookmark]:
        rows = [row for row in self.rows if row.owner == owner_id]
        return sorted(rows, key=lambda row: row.created_at, reverse=True)

    def hold_selects(self) -> None:
        self.held_selects = []

    async def select_bookmarks(self, session: Session) -> list[Bookmark]:
        self.select_calls += 1
        if self.held_selects is not None:
            future = asyncio.get_running_loop().create_future()
            self.held_selects.append(future)
            outcome = await future
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        if self.select_error is not None:
            raise self.select_error
        return self.owned(session.owner_id)

    async def insert_bookmark(self, session: Session, title: str, url: str) -> Bookmark:
        self.insert_calls += 1
        if self.insert_gate is not None:
            await self.insert_gate.wait()
        if self.insert_error is not None:
            raise self.insert_error
        return self.seed(session.owner_id, title, url)

    async def delete_bookmark(self, session: Session, bookmark_id: str) -> None:
        self.delete_calls += 1
        for row in self.rows:
            if row.id == bookmark_id and row.owner == session.owner_id:
                self.rows.remove(row)
                return
        raise PermissionDenied("bookmark not found", status_code=404)


class FakeSubscription:
    def __init__(self, session, on_event, on_status):
        self.session = session
        self.on_event = on_event
        self.on_status = on_status
        self.unsubscribed = False

    async def wait_opened(self):
        return None

    def unsubscribe(self):
        self.unsubscribed = True


class FakeFeed:
    def __init__(self):
        self.subscriptions: list[FakeSubscription] = []

    def subscribe(self, session, on_event, on_status=None, collection="bookmarks"):
        subscription = FakeSubscription(session, on_event, on_status)
        self.subscriptions.append(subscription)
        return subscription

    @property
    def active(self) -> list[FakeSubscription]:
        return [sub for sub in self.subscriptions if not sub.unsubscribed]


class FakeIdentity:
    def __init__(self):
        self.sessions: dict[str, Session] = {}
        self.sign_outs: list[Session] = []
        self.sign_out_error: Exception | None = None

    def sign_in_url(self, provider="google", redirect_target="/", **hints):
        return f"https://auth.test/sign-in/{provider}?redirect_to={redirect_target}"

    async def get_current_session(self, access_token: str):
        return self.sessions.get(access_token)

    async def sign_out(self, session: Session) -> None:
        if self.sign_out_error is not None:
            raise self.sign_out_error
        self.sign_outs.append(session)


class FakeChangeSource:
    """Scripted change-feed endpoint for subscriber tests."""

    def __init__(self, head: int = 0):
        self.head = head
        self.pages: list = []
        self.calls: list[int | None] = []
        self.head_gate: asyncio.Event | None = None
        self.head_error: Exception | None = None

    async def pull_changes(self, session, since=None, limit=None):
        self.calls.append(since)
        if since is None:
            if self.head_gate is not None:
                await self.head_gate.wait()
            if self.head_error is not None:
                raise self.head_error
            return ChangePage(events=[], cursor=self.head)
        if self.pages:
            outcome = self.pages.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        await asyncio.sleep(0)
        return ChangePage(events=[], cursor=since)


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_feed():
    return FakeFeed()


@pytest.fixture
def fake_identity():
    return FakeIdentity()


@pytest.fixture
def hub():
    return BroadcastHub()
