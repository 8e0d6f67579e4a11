from __future__ import annotations

import logging

from markshelf.errors import PermissionDenied
from markshelf.extensions import db
from markshelf.models import Bookmark, User
from markshelf.services.common import canonicalize_url, clean_title
from markshelf.services.feed import log_change_event


logger = logging.getLogger(__name__)


def list_bookmarks(owner: User) -> list[Bookmark]:
    return (
        Bookmark.query.filter_by(user_id=owner.id)
        .order_by(Bookmark.created_at.desc(), Bookmark.id.asc())
        .all()
    )


def insert_bookmark(owner: User, payload: dict) -> Bookmark:
    # Only title and url are read; owner fields in the payload are ignored.
    bookmark = Bookmark(
        user_id=owner.id,
        title=clean_title(payload.get("title")),
        url=canonicalize_url(payload.get("url")),
    )
    db.session.add(bookmark)
    db.session.flush()
    log_change_event(owner.id, bookmark.id, "insert")
    db.session.commit()
    logger.info("bookmark %s created for %s", bookmark.id, owner.id)
    return bookmark


def delete_bookmark(owner: User, bookmark_id: str) -> None:
    bookmark = Bookmark.query.filter_by(id=bookmark_id, user_id=owner.id).first()
    if not bookmark:
        raise PermissionDenied("bookmark not found", status_code=404)

    db.session.delete(bookmark)
    log_change_event(owner.id, bookmark_id, "delete")
    db.session.commit()
    logger.info("bookmark %s deleted for %s", bookmark_id, owner.id)
