from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import urlencode, urlsplit

import httpx
from itsdangerous import BadData, URLSafeTimedSerializer

from markshelf.extensions import db
from markshelf.models import User


logger = logging.getLogger(__name__)

PROVIDER_GOOGLE = "google"
SUPPORTED_PROVIDERS = {PROVIDER_GOOGLE}

# Provider specific query hints forwarded to the authorize endpoint.
SIGN_IN_HINTS = {"prompt", "login_hint", "hd", "access_type"}


class OAuthError(Exception):
    pass


@dataclass
class ProviderProfile:
    provider: str
    subject: str
    email: str | None
    display_name: str | None


def _serializer(secret_key: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret_key, salt="oauth-sign-in-state")


def create_state_token(secret_key: str, provider: str, redirect_to: str) -> str:
    return _serializer(secret_key).dumps(
        {"provider": provider, "redirect_to": redirect_to}
    )


def verify_state_token(secret_key: str, token: str, max_age: int) -> dict | None:
    try:
        payload = _serializer(secret_key).loads(token, max_age=max_age)
    except BadData:
        return None
    if payload.get("provider") not in SUPPORTED_PROVIDERS:
        return None
    return payload


def is_allowed_redirect(target: str, allowlist: str) -> bool:
    if not target:
        return False
    parsed = urlsplit(target)
    if not parsed.scheme and not parsed.netloc:
        # Relative paths only; "//host" would leave the origin.
        return target.startswith("/") and not target.startswith("//")
    prefixes = [item.strip() for item in (allowlist or "").split(",") if item.strip()]
    return any(target.startswith(prefix) for prefix in prefixes)


def build_authorize_url(
    config, provider: str, callback_url: str, state: str, hints: dict
) -> str:
    if provider != PROVIDER_GOOGLE:
        raise OAuthError(f"unsupported provider: {provider}")
    params = {
        "client_id": config["GOOGLE_CLIENT_ID"],
        "redirect_uri": callback_url,
        "response_type": "code",
        "scope": "openid email profile",
        "state": state,
    }
    for key, value in hints.items():
        if key in SIGN_IN_HINTS and value:
            params[key] = value
    return f"{config['GOOGLE_AUTHORIZE_URL']}?{urlencode(params)}"


def exchange_code_for_profile(config, code: str, callback_url: str) -> ProviderProfile:
    timeout = float(config["OAUTH_HTTP_TIMEOUT"])
    try:
        with httpx.Client(timeout=timeout) as client:
            token_response = client.post(
                config["GOOGLE_TOKEN_URL"],
                data={
                    "code": code,
                    "client_id": config["GOOGLE_CLIENT_ID"],
                    "client_secret": config["GOOGLE_CLIENT_SECRET"],
                    "redirect_uri": callback_url,
                    "grant_type": "authorization_code",
                },
            )
            token_response.raise_for_status()
            access_token = token_response.json().get("access_token")
            if not access_token:
                raise OAuthError("provider returned no access token")

            info_response = client.get(
                config["GOOGLE_USERINFO_URL"],
                headers={"Authorization": f"Bearer {access_token}"},
            )
            info_response.raise_for_status()
            info = info_response.json()
    except httpx.HTTPError as exc:
        raise OAuthError(f"provider request failed: {exc}") from exc

    subject = str(info.get("sub") or "").strip()
    if not subject:
        raise OAuthError("provider returned no subject")
    return ProviderProfile(
        provider=PROVIDER_GOOGLE,
        subject=subject,
        email=info.get("email"),
        display_name=info.get("name"),
    )


def upsert_user(profile: ProviderProfile) -> User:
    user = User.query.filter_by(
        provider=profile.provider, subject=profile.subject
    ).first()
    if not user:
        user = User(provider=profile.provider, subject=profile.subject)
        db.session.add(user)
        logger.info("new %s identity %s", profile.provider, profile.subject)
    user.email = profile.email
    user.display_name = profile.display_name
    db.session.commit()
    return user
