import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from flask import g, has_request_context
from flask_login import UserMixin
from sqlalchemy import event

from markshelf.extensions import db, login_manager


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    provider = db.Column(db.String(32), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(320), nullable=True)
    display_name = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    bookmarks = db.relationship("Bookmark", backref="user", lazy=True)

    __table_args__ = (
        db.UniqueConstraint("provider", "subject", name="uq_user_provider_subject"),
    )

    def as_identity(self):
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "provider": self.provider,
        }


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, user_id)


class Bookmark(db.Model):
    __tablename__ = "bookmarks"

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    title = db.Column(db.Text, nullable=False)
    url = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (db.Index("ix_bookmark_user_created", "user_id", "created_at"),)

    def as_dict(self):
        return {
            "id": self.id,
            "owner": self.user_id,
            "title": self.title,
            "url": self.url,
            "created_at": as_utc(self.created_at).isoformat(),
        }


@event.listens_for(Bookmark, "before_insert")
def _force_bookmark_owner(mapper, connection, target: Bookmark) -> None:
    """Owner always comes from the authenticated caller, never from input."""
    if not has_request_context():
        return
    caller = g.get("api_user")
    if caller is not None:
        target.user_id = caller.id


class SessionToken(db.Model):
    __tablename__ = "session_tokens"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    token_hash = db.Column(db.String(128), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    user = db.relationship("User", backref="session_tokens")

    @staticmethod
    def hash_token(token: str) -> str:
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @classmethod
    def issue(cls, user: User, ttl_hours: int, prefix="ms"):
        token = f"{prefix}_{secrets.token_urlsafe(32)}"
        row = cls(
            user_id=user.id,
            token_hash=cls.hash_token(token),
            expires_at=utcnow() + timedelta(hours=ttl_hours),
        )
        return token, row

    def is_usable(self) -> bool:
        if self.revoked_at is not None:
            return False
        return as_utc(self.expires_at) > utcnow()


class ChangeEvent(db.Model):
    __tablename__ = "change_events"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    collection = db.Column(db.String(64), nullable=False, default="bookmarks")
    entity_id = db.Column(db.String(36), nullable=True)
    action = db.Column(db.String(32), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # Cursors must never be reused after pruning.
    __table_args__ = (
        db.Index("ix_change_user_cursor", "user_id", "id"),
        {"sqlite_autoincrement": True},
    )

    def as_dict(self):
        return {
            "cursor": self.id,
            "collection": self.collection,
            "entity_id": self.entity_id,
            "action": self.action,
            "created_at": as_utc(self.created_at).isoformat(),
        }
