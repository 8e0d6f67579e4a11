"""Async HTTP adapter for the scoped record store.

Every call takes the caller's :class:`Session` explicitly; the store scopes
reads and writes to that identity on its side.
"""

from __future__ import annotations

import logging

import httpx

from markshelf.client.models import Bookmark, ChangeEvent, ChangePage, Session
from markshelf.errors import FetchError, PermissionDenied, StoreError


logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return f"store responded with HTTP {response.status_code}"


class RecordStore:
    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/api/v1",
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, session: Session, method: str, path: str, **kwargs):
        headers = {"Authorization": f"Bearer {session.access_token}"}
        return await self._client.request(method, path, headers=headers, **kwargs)

    async def select_bookmarks(self, session: Session) -> list[Bookmark]:
        try:
            response = await self._send(session, "GET", "/bookmarks")
        except httpx.HTTPError as exc:
            raise FetchError(f"could not reach the bookmark store: {exc}") from exc
        if response.status_code != 200:
            raise FetchError(_error_message(response))
        try:
            return [Bookmark.from_dict(row) for row in response.json()["items"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"malformed bookmark list: {exc}") from exc

    async def insert_bookmark(self, session: Session, title: str, url: str) -> Bookmark:
        try:
            response = await self._send(
                session, "POST", "/bookmarks", json={"title": title, "url": url}
            )
        except httpx.HTTPError as exc:
            raise StoreError(f"could not reach the bookmark store: {exc}") from exc
        if response.status_code != 201:
            raise StoreError(_error_message(response), status_code=response.status_code)
        try:
            return Bookmark.from_dict(response.json())
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"malformed bookmark record: {exc}") from exc

    async def delete_bookmark(self, session: Session, bookmark_id: str) -> None:
        try:
            response = await self._send(session, "DELETE", f"/bookmarks/{bookmark_id}")
        except httpx.HTTPError as exc:
            raise StoreError(f"could not reach the bookmark store: {exc}") from exc
        if response.status_code in (403, 404):
            raise PermissionDenied(
                _error_message(response), status_code=response.status_code
            )
        if response.status_code != 200:
            raise StoreError(_error_message(response), status_code=response.status_code)

    async def pull_changes(
        self, session: Session, since: int | None = None, limit: int | None = None
    ) -> ChangePage:
        params = {}
        if since is not None:
            params["since"] = since
        if limit is not None:
            params["limit"] = limit
        try:
            response = await self._send(session, "GET", "/changes", params=params)
        except httpx.HTTPError as exc:
            raise FetchError(f"change feed unreachable: {exc}") from exc
        if response.status_code != 200:
            raise FetchError(_error_message(response))
        try:
            payload = response.json()
            return ChangePage(
                events=[ChangeEvent.from_dict(row) for row in payload["events"]],
                cursor=int(payload.get("cursor") or 0),
                has_more=bool(payload.get("has_more")),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"malformed change page: {exc}") from exc
