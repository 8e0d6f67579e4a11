"""Change-feed subscriber.

The service exposes the mutation stream of the bookmarks collection as a
cursor-based pull endpoint. A :class:`Subscription` polls it in a background
task and hands every event to ``on_event`` without interpreting it; callers
re-fetch their state instead of patching it from event payloads.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from markshelf.client.models import ChangeEvent, Session
from markshelf.errors import FetchError, MarkshelfError


logger = logging.getLogger(__name__)

STATUS_SUBSCRIBED = "SUBSCRIBED"
STATUS_CHANNEL_ERROR = "CHANNEL_ERROR"

COLLECTIONS = {"bookmarks"}

EventCallback = Callable[[ChangeEvent], None]
StatusCallback = Callable[[str, Exception | None], None]


class Subscription:
    def __init__(
        self,
        source,
        session: Session,
        on_event: EventCallback,
        on_status: StatusCallback | None,
        poll_interval: float,
        max_backoff: float,
    ):
        self.session = session
        self._source = source
        self._on_event = on_event
        self._on_status = on_status
        self._poll_interval = poll_interval
        self._max_backoff = max(max_backoff, poll_interval)
        self._task: asyncio.Task | None = None
        self._closed = False
        self._opened = asyncio.Event()
        self.status: str | None = None
        self.cursor: int | None = None

    @property
    def active(self) -> bool:
        return not self._closed

    def start(self) -> None:
        if self._closed or self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name=f"change-feed-{self.session.owner_id}"
        )

    async def wait_opened(self) -> None:
        """Wait until the first attempt to read the head cursor has finished.

        Returns after a failed attempt too, and right away once unsubscribed.
        """
        await self._opened.wait()

    def unsubscribe(self) -> None:
        self._closed = True
        self._opened.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def _set_status(self, status: str, error: Exception | None = None) -> None:
        self._opened.set()
        if self.status == status:
            return
        self.status = status
        if status == STATUS_CHANNEL_ERROR:
            logger.warning(
                "change feed degraded for %s: %s", self.session.owner_id, error
            )
        else:
            logger.info("change feed %s for %s", status.lower(), self.session.owner_id)
        if self._on_status is not None and not self._closed:
            self._on_status(status, error)

    async def _poll_once(self) -> bool:
        if self.cursor is None:
            page = await self._source.pull_changes(self.session)
            self.cursor = page.cursor
            return False

        page = await self._source.pull_changes(self.session, since=self.cursor)
        for event in page.events:
            if self._closed:
                break
            self._on_event(event)
        self.cursor = page.cursor
        return page.has_more

    async def _run(self) -> None:
        delay = self._poll_interval
        while not self._closed:
            try:
                has_more = await self._poll_once()
            except Exception as exc:
                if not isinstance(exc, MarkshelfError):
                    logger.exception(
                        "unexpected change feed failure for %s", self.session.owner_id
                    )
                    exc = FetchError(str(exc))
                self._set_status(STATUS_CHANNEL_ERROR, exc)
                delay = min(max(delay * 2, self._poll_interval, 0.5), self._max_backoff)
            else:
                self._set_status(STATUS_SUBSCRIBED)
                delay = self._poll_interval
                if has_more:
                    continue
            await asyncio.sleep(delay)


class ChangeFeed:
    def __init__(self, source, poll_interval: float = 2.0, max_backoff: float = 30.0):
        self._source = source
        self.poll_interval = poll_interval
        self.max_backoff = max_backoff

    def subscribe(
        self,
        session: Session,
        on_event: EventCallback,
        on_status: StatusCallback | None = None,
        collection: str = "bookmarks",
    ) -> Subscription:
        if collection not in COLLECTIONS:
            raise ValueError(f"unknown collection: {collection}")
        subscription = Subscription(
            self._source,
            session,
            on_event,
            on_status,
            poll_interval=self.poll_interval,
            max_backoff=self.max_backoff,
        )
        subscription.start()
        return subscription
