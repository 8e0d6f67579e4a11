from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone

from dateutil import parser as dt_parser


class SortMode(str, enum.Enum):
    LATEST = "latest"
    OLDEST = "oldest"
    ALPHABETICAL = "alphabetical"


class SyncState(str, enum.Enum):
    ANONYMOUS = "anonymous"
    AUTHENTICATING = "authenticating"
    SYNCING = "syncing"
    IDLE = "idle"
    ERROR = "error"


AUTHENTICATED_STATES = {SyncState.SYNCING, SyncState.IDLE, SyncState.ERROR}


def parse_timestamp(value: str | None) -> datetime:
    if not value:
        raise ValueError("timestamp is required")
    parsed = dt_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Bookmark:
    id: str
    title: str
    url: str
    created_at: datetime
    # As reported by the store. Never sent back.
    owner: str | None = None

    @classmethod
    def from_dict(cls, payload: dict) -> "Bookmark":
        return cls(
            id=str(payload["id"]),
            title=payload.get("title") or "",
            url=payload.get("url") or "",
            created_at=parse_timestamp(payload.get("created_at")),
            owner=payload.get("owner"),
        )


@dataclass(frozen=True)
class Identity:
    id: str
    email: str | None = None
    display_name: str | None = None

    @classmethod
    def from_dict(cls, payload: dict) -> "Identity":
        return cls(
            id=str(payload["id"]),
            email=payload.get("email"),
            display_name=payload.get("display_name"),
        )


@dataclass(frozen=True)
class Session:
    identity: Identity
    access_token: str = field(repr=False)

    @property
    def owner_id(self) -> str:
        return self.identity.id


@dataclass(frozen=True)
class ChangeEvent:
    cursor: int
    action: str
    entity_id: str | None = None
    collection: str = "bookmarks"

    @classmethod
    def from_dict(cls, payload: dict) -> "ChangeEvent":
        return cls(
            cursor=int(payload["cursor"]),
            action=payload.get("action") or "",
            entity_id=payload.get("entity_id"),
            collection=payload.get("collection") or "bookmarks",
        )


@dataclass
class ChangePage:
    events: list[ChangeEvent]
    cursor: int
    has_more: bool = False
