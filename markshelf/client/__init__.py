from markshelf.client.broadcast import BroadcastHub, TabNotifier
from markshelf.client.core import BookmarkSync
from markshelf.client.feed import ChangeFeed
from markshelf.client.identity import IdentityClient
from markshelf.client.models import Bookmark, Identity, Session, SortMode, SyncState
from markshelf.client.store import RecordStore
from markshelf.client.view import view

__all__ = [
    "Bookmark",
    "BookmarkSync",
    "BroadcastHub",
    "ChangeFeed",
    "Identity",
    "IdentityClient",
    "RecordStore",
    "Session",
    "SortMode",
    "SyncState",
    "TabNotifier",
    "view",
]
