"""Bookmark synchronization core.

:class:`BookmarkSync` owns the local snapshot of the signed-in user's
bookmarks. The snapshot is only ever replaced wholesale by :meth:`reload`
(or trimmed by a successful delete); change-feed events, sibling-tab
broadcasts and local mutations are all just reload triggers.

Everything runs on one asyncio loop. No locks are needed, but several
reloads may be in flight at once and can finish in any order, so each one
carries a sequence number and only results newer than the last applied one
are kept.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from functools import partial

from markshelf.client.broadcast import CHANGED_MESSAGE, BroadcastHub, TabNotifier
from markshelf.client.feed import STATUS_CHANNEL_ERROR, STATUS_SUBSCRIBED, ChangeFeed
from markshelf.client.identity import token_from_redirect
from markshelf.client.models import (
    AUTHENTICATED_STATES,
    Bookmark,
    Session,
    SortMode,
    SyncState,
)
from markshelf.client.view import view
from markshelf.errors import (
    AdvisoryDegradation,
    FetchError,
    MarkshelfError,
    StoreError,
    ValidationError,
)
from markshelf.services.common import canonicalize_url, clean_title


logger = logging.getLogger(__name__)

DEGRADED_MESSAGE = "Realtime connection failed. Using tab sync fallback."

Listener = Callable[["BookmarkSync"], None]


class BookmarkSync:
    def __init__(
        self,
        store,
        feed: ChangeFeed,
        identity=None,
        hub: BroadcastHub | None = None,
    ):
        self._store = store
        self._feed = feed
        self._identity = identity
        self._hub = hub

        self.state = SyncState.ANONYMOUS
        self.session: Session | None = None
        self.items: tuple[Bookmark, ...] = ()
        self.search_query = ""
        self.sort_mode = SortMode.LATEST
        self.pending_delete: Bookmark | None = None
        self.error: MarkshelfError | None = None
        self.advisory: AdvisoryDegradation | None = None

        self._subscription = None
        self._notifier: TabNotifier | None = None
        self._listeners: list[Listener] = []
        self._background: set[asyncio.Task] = set()
        self._generation = 0
        self._closed = False
        self._reload_seq = 0
        self._applied_seq = 0
        self._reload_queued = False
        self._feed_degraded = False
        self._creating = False
        self._deleting: set[str] = set()

    # -- presentation hooks -------------------------------------------------

    @property
    def is_authenticated(self) -> bool:
        return self.state in AUTHENTICATED_STATES

    @property
    def creating(self) -> bool:
        return self._creating

    def is_deleting(self, bookmark_id: str) -> bool:
        return bookmark_id in self._deleting

    def add_listener(self, callback: Listener) -> Callable[[], None]:
        self._listeners.append(callback)

        def remove():
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _changed(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    def _set_state(self, state: SyncState) -> None:
        if state != self.state:
            logger.debug("sync state %s -> %s", self.state.value, state.value)
            self.state = state
        self._changed()

    def _fail(self, exc: MarkshelfError) -> None:
        self.error = exc
        self._changed()

    def set_search_query(self, query: str) -> None:
        self.search_query = query or ""
        self._changed()

    def set_sort_mode(self, mode: SortMode | str) -> None:
        try:
            self.sort_mode = SortMode(mode)
        except ValueError as exc:
            raise ValidationError(f"unknown sort mode: {mode}") from exc
        self._changed()

    def current_view(self) -> list[Bookmark]:
        return view(self.items, self.search_query, self.sort_mode)

    # -- sign-in lifecycle --------------------------------------------------

    def begin_sign_in(
        self, provider: str = "google", redirect_target: str = "/", **hints
    ) -> str:
        if self._identity is None:
            raise RuntimeError("no identity client configured")
        if self.is_authenticated:
            raise ValidationError("already signed in")
        url = self._identity.sign_in_url(provider, redirect_target, **hints)
        self.error = None
        self._set_state(SyncState.AUTHENTICATING)
        return url

    def cancel_sign_in(self, message: str | None = None) -> None:
        if self.state != SyncState.AUTHENTICATING:
            return
        if message:
            self.error = MarkshelfError(message)
        self._set_state(SyncState.ANONYMOUS)

    async def complete_sign_in_from_redirect(self, redirect_url: str) -> Session | None:
        try:
            token = token_from_redirect(redirect_url)
        except ValidationError as exc:
            self.cancel_sign_in(exc.message)
            raise
        return await self.restore_session(token)

    async def restore_session(self, access_token: str) -> Session | None:
        if self._identity is None:
            raise RuntimeError("no identity client configured")
        try:
            session = await self._identity.get_current_session(access_token)
        except MarkshelfError as exc:
            self.cancel_sign_in()
            self._fail(exc)
            raise
        if session is None:
            self.cancel_sign_in("session expired, please sign in again")
            return None
        await self.complete_sign_in(session)
        return session

    async def complete_sign_in(self, session: Session) -> None:
        if self._closed:
            return
        if self.session is not None:
            if self.session.owner_id != session.owner_id:
                logger.info(
                    "identity changed from %s to %s",
                    self.session.owner_id,
                    session.owner_id,
                )
                self.items = ()
                self.pending_delete = None
            self._teardown()

        self.session = session
        self.error = None
        self._set_state(SyncState.SYNCING)
        self._open_channels(session)
        generation = self._generation
        logger.info("signed in as %s", session.owner_id)
        # The feed cursor has to predate the first snapshot, or a write landing
        # between the two is seen by neither.
        await self._subscription.wait_opened()
        if generation != self._generation:
            return
        await self._reload_quietly()

    async def sign_out(self) -> None:
        session = self.session
        if session is not None and self._identity is not None:
            try:
                await self._identity.sign_out(session)
            except MarkshelfError as exc:
                self._fail(exc)
                raise
        self._teardown()
        self.session = None
        self.items = ()
        self.pending_delete = None
        self.error = None
        self._set_state(SyncState.ANONYMOUS)

    def close(self) -> None:
        """Release the subscription and tab channel without signing out."""
        self._closed = True
        self._teardown()

    def _open_channels(self, session: Session) -> None:
        generation = self._generation
        self._subscription = self._feed.subscribe(
            session,
            on_event=partial(self._on_feed_event, generation),
            on_status=partial(self._on_feed_status, generation),
        )
        self._notifier = TabNotifier(session.owner_id, self._hub)
        self._notifier.listen(partial(self._on_tab_message, generation))

    def _teardown(self) -> None:
        # Bumping the generation mutes callbacks and drops in-flight results.
        self._generation += 1
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._notifier is not None:
            self._notifier.close()
            self._notifier = None
        self._reload_queued = False
        self._feed_degraded = False
        self.advisory = None

    # -- reload triggers ----------------------------------------------------

    def _on_feed_event(self, generation: int, event) -> None:
        if generation != self._generation:
            return
        self._request_reload(f"change feed {event.action}")

    def _on_feed_status(self, generation: int, status: str, error=None) -> None:
        if generation != self._generation:
            return
        if status == STATUS_CHANNEL_ERROR:
            self._feed_degraded = True
            self.advisory = AdvisoryDegradation(DEGRADED_MESSAGE)
            self._changed()
        elif status == STATUS_SUBSCRIBED and self._feed_degraded:
            # Events may have been missed while the feed was down.
            self._feed_degraded = False
            self.advisory = None
            self._request_reload("change feed recovered")

    def _on_tab_message(self, generation: int, message: dict) -> None:
        if generation != self._generation:
            return
        if message.get("type") != CHANGED_MESSAGE["type"]:
            return
        self._request_reload("tab broadcast")

    def _request_reload(self, reason: str) -> None:
        if self.session is None or self._closed or self._reload_queued:
            return
        self._reload_queued = True
        logger.debug("reload requested by %s", reason)
        task = asyncio.get_running_loop().create_task(self._triggered_reload())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _triggered_reload(self) -> None:
        self._reload_queued = False
        await self._reload_quietly()

    async def _reload_quietly(self) -> None:
        try:
            await self.reload()
        except FetchError as exc:
            logger.info("reload failed, keeping last snapshot: %s", exc.message)

    def _broadcast(self) -> None:
        if self._notifier is not None:
            self._notifier.notify()

    # -- store operations ---------------------------------------------------

    def _require_session(self) -> Session:
        if self.session is None:
            raise ValidationError("sign in to manage bookmarks")
        return self.session

    def _is_current(self, generation: int, seq: int) -> bool:
        return generation == self._generation and seq > self._applied_seq

    async def reload(self) -> tuple[Bookmark, ...]:
        session = self.session
        if session is None or self._closed:
            return self.items

        self._reload_seq += 1
        seq = self._reload_seq
        generation = self._generation
        self._set_state(SyncState.SYNCING)
        try:
            rows = await self._store.select_bookmarks(session)
        except MarkshelfError as exc:
            error = exc if isinstance(exc, FetchError) else FetchError(exc.message)
            if self._is_current(generation, seq):
                self._applied_seq = seq
                self.error = error
                self._set_state(SyncState.ERROR)
            else:
                logger.debug("ignoring failure of superseded reload %s", seq)
            if error is exc:
                raise
            raise error from exc

        if not self._is_current(generation, seq):
            logger.debug("discarding superseded reload %s", seq)
            return self.items

        self._applied_seq = seq
        self.items = tuple(rows)
        if self.pending_delete is not None and not any(
            item.id == self.pending_delete.id for item in self.items
        ):
            self.pending_delete = None
        if isinstance(self.error, FetchError):
            self.error = None
        self._set_state(SyncState.IDLE)
        return self.items

    async def create(self, title: str, url: str) -> Bookmark | None:
        session = self._require_session()
        try:
            clean = clean_title(title)
            canonical = canonicalize_url(url)
        except ValidationError as exc:
            self._fail(exc)
            raise

        if self._creating:
            logger.debug("create already in flight, ignoring duplicate submit")
            return None

        self._creating = True
        self.error = None
        self._changed()
        try:
            created = await self._store.insert_bookmark(session, clean, canonical)
        except StoreError as exc:
            self._fail(exc)
            raise
        finally:
            self._creating = False

        if session is self.session:
            await self._reload_quietly()
            self._broadcast()
        return created

    async def delete(self, bookmark_id: str) -> bool:
        session = self._require_session()
        if bookmark_id in self._deleting:
            logger.debug("delete of %s already in flight", bookmark_id)
            return False

        self._deleting.add(bookmark_id)
        self.error = None
        self._changed()
        try:
            await self._store.delete_bookmark(session, bookmark_id)
        except StoreError as exc:
            self._fail(exc)
            raise
        finally:
            self._deleting.discard(bookmark_id)

        if session is self.session:
            # The local removal is the newest write; older reloads may not undo it.
            self._applied_seq = self._reload_seq
            self.items = tuple(item for item in self.items if item.id != bookmark_id)
            pending = self.pending_delete
            if pending is not None and pending.id == bookmark_id:
                self.pending_delete = None
            self._changed()
            self._broadcast()
        return True

    def request_delete(self, bookmark_id: str) -> Bookmark:
        for item in self.items:
            if item.id == bookmark_id:
                self.pending_delete = item
                self._changed()
                return item
        raise ValidationError("bookmark is not in the current list")

    async def confirm_delete(self) -> bool:
        pending = self.pending_delete
        if pending is None:
            return False
        try:
            return await self.delete(pending.id)
        finally:
            if self.pending_delete is pending:
                self.pending_delete = None
                self._changed()

    def cancel_delete(self) -> None:
        if self.pending_delete is None:
            return
        self.pending_delete = None
        self._changed()
