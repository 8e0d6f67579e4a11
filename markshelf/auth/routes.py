from __future__ import annotations

import logging
from urllib.parse import urlencode

from flask import abort, current_app, jsonify, redirect, request, url_for
from flask_login import current_user, login_user, logout_user

from markshelf.auth import auth_bp
from markshelf.extensions import db
from markshelf.models import SessionToken, utcnow
from markshelf.services.oauth import (
    SIGN_IN_HINTS,
    SUPPORTED_PROVIDERS,
    OAuthError,
    build_authorize_url,
    create_state_token,
    exchange_code_for_profile,
    is_allowed_redirect,
    upsert_user,
    verify_state_token,
)
from markshelf.services.security import (
    get_authenticated_user,
    session_token_from_request,
)


logger = logging.getLogger(__name__)


def _callback_url() -> str:
    return url_for("auth.callback", _external=True)


def _redirect_with_fragment(target: str, **values):
    return redirect(f"{target}#{urlencode(values)}")


@auth_bp.route("/sign-in/<provider>", methods=["GET"])
def sign_in(provider: str):
    if provider not in SUPPORTED_PROVIDERS:
        abort(404)

    redirect_to = (request.args.get("redirect_to") or "/").strip()
    allowlist = current_app.config["AUTH_REDIRECT_ALLOWLIST"]
    if not is_allowed_redirect(redirect_to, allowlist):
        return jsonify({"error": "redirect target not allowed"}), 400

    state = create_state_token(current_app.config["SECRET_KEY"], provider, redirect_to)
    hints = {key: request.args.get(key) for key in SIGN_IN_HINTS}
    authorize_url = build_authorize_url(
        current_app.config, provider, _callback_url(), state, hints
    )
    return redirect(authorize_url)


@auth_bp.route("/callback", methods=["GET"])
def callback():
    payload = verify_state_token(
        current_app.config["SECRET_KEY"],
        request.args.get("state") or "",
        max_age=current_app.config["OAUTH_STATE_TTL_SECONDS"],
    )
    if not payload:
        return jsonify({"error": "invalid or expired sign-in state"}), 400

    redirect_to = payload["redirect_to"]
    provider_error = request.args.get("error")
    if provider_error:
        logger.info("sign-in cancelled by provider: %s", provider_error)
        return _redirect_with_fragment(redirect_to, error=provider_error)

    code = request.args.get("code") or ""
    if not code:
        return _redirect_with_fragment(redirect_to, error="missing_code")

    try:
        profile = exchange_code_for_profile(current_app.config, code, _callback_url())
    except OAuthError as exc:
        logger.warning("sign-in failed: %s", exc)
        return _redirect_with_fragment(redirect_to, error="provider_error")

    user = upsert_user(profile)
    login_user(user)
    token, token_row = SessionToken.issue(
        user, current_app.config["SESSION_TOKEN_TTL_HOURS"]
    )
    db.session.add(token_row)
    db.session.commit()
    logger.info("user %s signed in", user.id)
    return _redirect_with_fragment(
        redirect_to, access_token=token, token_type="bearer"
    )


@auth_bp.route("/session", methods=["GET"])
def current_session():
    user = get_authenticated_user()
    if not user:
        return jsonify({"identity": None})
    return jsonify({"identity": user.as_identity()})


@auth_bp.route("/sign-out", methods=["POST"])
def sign_out():
    token_row = session_token_from_request()
    if token_row:
        token_row.revoked_at = utcnow()
        db.session.commit()
        logger.info("user %s signed out", token_row.user_id)
    if current_user.is_authenticated:
        logout_user()
    return jsonify({"status": "signed_out"})
