from __future__ import annotations

from datetime import timedelta

from markshelf.extensions import db
from markshelf.models import ChangeEvent, utcnow


COLLECTION_BOOKMARKS = "bookmarks"


def log_change_event(user_id: str, entity_id: str | None, action: str):
    event = ChangeEvent(
        user_id=user_id,
        collection=COLLECTION_BOOKMARKS,
        entity_id=entity_id,
        action=action,
    )
    db.session.add(event)


def head_cursor(user_id: str) -> int:
    latest = (
        db.session.query(db.func.max(ChangeEvent.id))
        .filter_by(user_id=user_id)
        .scalar()
    )
    return latest or 0


def pull_changes(user_id: str, since: int | None, limit: int) -> dict:
    if since is None:
        return {"events": [], "cursor": head_cursor(user_id), "has_more": False}

    limit = max(1, limit)
    events = (
        ChangeEvent.query.filter_by(user_id=user_id)
        .filter(ChangeEvent.id > since)
        .order_by(ChangeEvent.id.asc())
        .limit(limit)
        .all()
    )
    latest_cursor = since
    if events:
        latest_cursor = events[-1].id
    return {
        "events": [event.as_dict() for event in events],
        "cursor": latest_cursor,
        "has_more": len(events) == limit,
    }


def prune_change_events(retention_hours: int) -> int:
    cutoff = utcnow() - timedelta(hours=retention_hours)
    deleted = ChangeEvent.query.filter(ChangeEvent.created_at < cutoff).delete(
        synchronize_session=False
    )
    db.session.commit()
    return deleted
