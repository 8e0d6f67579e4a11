from datetime import timedelta

from markshelf.extensions import db
from markshelf.jobs.scheduler import run_change_feed_prune
from markshelf.models import Bookmark, ChangeEvent, SessionToken, User, utcnow


def _create_user(subject: str, email: str | None = None):
    user = User(provider="google", subject=subject, email=email)
    db.session.add(user)
    db.session.commit()
    return user


def _issue_token(user, ttl_hours: int = 24):
    token, row = SessionToken.issue(user, ttl_hours)
    db.session.add(row)
    db.session.commit()
    return token


def _auth_for(app, subject: str):
    with app.app_context():
        user = _create_user(subject, f"{subject}@example.com")
        token = _issue_token(user)
        return user.id, {"Authorization": f"Bearer {token}"}


def test_health(client):
    response = client.get("/api/v1/health")
    assert response.status_code == 200
    assert response.get_json()["status"] == "ok"


def test_bookmarks_require_authentication(client):
    assert client.get("/api/v1/bookmarks").status_code == 401
    response = client.post(
        "/api/v1/bookmarks", json={"title": "Docs", "url": "https://example.com"}
    )
    assert response.status_code == 401
    response = client.get(
        "/api/v1/bookmarks", headers={"Authorization": "Bearer ms_not-a-token"}
    )
    assert response.status_code == 401


def test_expired_and_revoked_tokens_are_rejected(client, app):
    with app.app_context():
        user = _create_user("expired")
        token, row = SessionToken.issue(user, 1)
        row.expires_at = utcnow() - timedelta(minutes=1)
        db.session.add(row)
        revoked, revoked_row = SessionToken.issue(user, 1)
        revoked_row.revoked_at = utcnow()
        db.session.add(revoked_row)
        db.session.commit()

    for value in (token, revoked):
        response = client.get(
            "/api/v1/bookmarks", headers={"Authorization": f"Bearer {value}"}
        )
        assert response.status_code == 401


def test_create_assigns_owner_server_side_and_canonicalizes(client, app):
    owner_id, auth = _auth_for(app, "alice")
    other_id, _ = _auth_for(app, "bob")

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={
            "title": "  Docs ",
            "url": "HTTPS://Example.com/docs",
            "owner": other_id,
            "user_id": other_id,
        },
    )
    assert response.status_code == 201
    payload = response.get_json()
    assert payload["owner"] == owner_id
    assert payload["title"] == "Docs"
    assert payload["url"] == "https://example.com/docs"
    assert payload["created_at"]

    with app.app_context():
        stored = db.session.get(Bookmark, payload["id"])
        assert stored.user_id == owner_id


def test_create_rejects_invalid_input(client, app):
    _, auth = _auth_for(app, "alice")

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"title": "Docs", "url": "example.com/docs"},
    )
    assert response.status_code == 400
    assert "http" in response.get_json()["error"]

    response = client.post(
        "/api/v1/bookmarks",
        headers=auth,
        json={"title": "   ", "url": "https://example.com"},
    )
    assert response.status_code == 400

    with app.app_context():
        assert Bookmark.query.count() == 0


def test_list_is_scoped_to_owner_and_newest_first(client, app):
    _, alice = _auth_for(app, "alice")
    _, bob = _auth_for(app, "bob")

    for title in ["First", "Second"]:
        client.post(
            "/api/v1/bookmarks",
            headers=alice,
            json={"title": title, "url": f"https://example.com/{title.lower()}"},
        )
    client.post(
        "/api/v1/bookmarks",
        headers=bob,
        json={"title": "Bob only", "url": "https://example.org"},
    )

    with app.app_context():
        rows = Bookmark.query.filter_by(title="First").all()
        rows[0].created_at = utcnow() - timedelta(hours=1)
        db.session.commit()

    items = client.get("/api/v1/bookmarks", headers=alice).get_json()["items"]
    assert [item["title"] for item in items] == ["Second", "First"]

    items = client.get("/api/v1/bookmarks", headers=bob).get_json()["items"]
    assert [item["title"] for item in items] == ["Bob only"]


def test_delete_enforces_ownership(client, app):
    _, alice = _auth_for(app, "alice")
    _, bob = _auth_for(app, "bob")

    created = client.post(
        "/api/v1/bookmarks",
        headers=alice,
        json={"title": "Docs", "url": "https://example.com/docs"},
    ).get_json()

    response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=bob)
    assert response.status_code == 404
    items = client.get("/api/v1/bookmarks", headers=alice).get_json()["items"]
    assert len(items) == 1

    response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=alice)
    assert response.status_code == 200
    assert response.get_json() == {"status": "deleted", "id": created["id"]}

    response = client.delete(f"/api/v1/bookmarks/{created['id']}", headers=alice)
    assert response.status_code == 404


def test_change_feed_reports_own_mutations_only(client, app):
    _, alice = _auth_for(app, "alice")
    _, bob = _auth_for(app, "bob")

    head = client.get("/api/v1/changes", headers=alice).get_json()
    assert head == {"events": [], "cursor": 0, "has_more": False}

    created = client.post(
        "/api/v1/bookmarks",
        headers=alice,
        json={"title": "Docs", "url": "https://example.com/docs"},
    ).get_json()
    client.post(
        "/api/v1/bookmarks",
        headers=bob,
        json={"title": "Other", "url": "https://example.org"},
    )
    client.delete(f"/api/v1/bookmarks/{created['id']}", headers=alice)

    page = client.get("/api/v1/changes?since=0", headers=alice).get_json()
    assert [event["action"] for event in page["events"]] == ["insert", "delete"]
    assert {event["entity_id"] for event in page["events"]} == {created["id"]}
    assert page["cursor"] == page["events"][-1]["cursor"]
    assert page["has_more"] is False

    after = client.get(
        f"/api/v1/changes?since={page['cursor']}", headers=alice
    ).get_json()
    assert after["events"] == []
    assert after["cursor"] == page["cursor"]

    limited = client.get("/api/v1/changes?since=0&limit=1", headers=alice).get_json()
    assert len(limited["events"]) == 1
    assert limited["has_more"] is True

    bob_page = client.get("/api/v1/changes?since=0", headers=bob).get_json()
    assert [event["action"] for event in bob_page["events"]] == ["insert"]


def test_prune_job_removes_old_change_events(app):
    with app.app_context():
        user = _create_user("pruned")
        old = ChangeEvent(user_id=user.id, entity_id="x", action="insert")
        old.created_at = utcnow() - timedelta(hours=500)
        fresh = ChangeEvent(user_id=user.id, entity_id="y", action="insert")
        db.session.add_all([old, fresh])
        db.session.commit()

    run_change_feed_prune(app)

    with app.app_context():
        remaining = ChangeEvent.query.all()
        assert [event.entity_id for event in remaining] == ["y"]
