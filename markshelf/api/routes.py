from __future__ import annotations

from flask import current_app, g, jsonify, request

from markshelf.api import api_bp
from markshelf.errors import PermissionDenied, ValidationError
from markshelf.services.feed import pull_changes
from markshelf.services.security import api_auth_required
from markshelf.services.store import delete_bookmark, insert_bookmark, list_bookmarks


@api_bp.route("/health")
def health():
    return jsonify({"status": "ok", "service": "Markshelf"})


@api_bp.route("/bookmarks", methods=["GET"])
@api_auth_required()
def bookmarks_list_api():
    items = list_bookmarks(g.api_user)
    return jsonify({"items": [item.as_dict() for item in items]})


@api_bp.route("/bookmarks", methods=["POST"])
@api_auth_required()
def bookmarks_create_api():
    payload = request.get_json(silent=True) or {}
    try:
        bookmark = insert_bookmark(g.api_user, payload)
    except ValidationError as exc:
        return jsonify({"error": exc.message}), 400
    return jsonify(bookmark.as_dict()), 201


@api_bp.route("/bookmarks/<bookmark_id>", methods=["DELETE"])
@api_auth_required()
def bookmarks_delete_api(bookmark_id: str):
    try:
        delete_bookmark(g.api_user, bookmark_id)
    except PermissionDenied as exc:
        return jsonify({"error": exc.message}), exc.status_code or 404
    return jsonify({"status": "deleted", "id": bookmark_id})


@api_bp.route("/changes", methods=["GET"])
@api_auth_required()
def changes_pull_api():
    since = request.args.get("since", default=None, type=int)
    limit = request.args.get(
        "limit", default=current_app.config["CHANGE_FEED_PAGE_LIMIT"], type=int
    )
    limit = min(limit, current_app.config["CHANGE_FEED_PAGE_LIMIT"])
    return jsonify(pull_changes(g.api_user.id, since, limit))
