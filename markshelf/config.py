import os
from pathlib import Path


BASE_DIR = Path(__file__).resolve().parent.parent


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "default-secret-key")
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", f"sqlite:///{BASE_DIR / 'markshelf.db'}"
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SCHEDULER_ENABLED = os.environ.get("SCHEDULER_ENABLED", "1") == "1"
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
    GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
    GOOGLE_AUTHORIZE_URL = os.environ.get(
        "GOOGLE_AUTHORIZE_URL", "https://accounts.google.com/o/oauth2/v2/auth"
    )
    GOOGLE_TOKEN_URL = os.environ.get(
        "GOOGLE_TOKEN_URL", "https://oauth2.googleapis.com/token"
    )
    GOOGLE_USERINFO_URL = os.environ.get(
        "GOOGLE_USERINFO_URL", "https://openidconnect.googleapis.com/v1/userinfo"
    )
    OAUTH_STATE_TTL_SECONDS = int(os.environ.get("OAUTH_STATE_TTL_SECONDS", "600"))
    OAUTH_HTTP_TIMEOUT = float(os.environ.get("OAUTH_HTTP_TIMEOUT", "10"))
    # Comma separated url prefixes; relative paths are always allowed.
    AUTH_REDIRECT_ALLOWLIST = os.environ.get("AUTH_REDIRECT_ALLOWLIST", "")
    SESSION_TOKEN_TTL_HOURS = int(os.environ.get("SESSION_TOKEN_TTL_HOURS", "336"))

    CHANGE_FEED_PAGE_LIMIT = int(os.environ.get("CHANGE_FEED_PAGE_LIMIT", "200"))
    CHANGE_FEED_RETENTION_HOURS = int(
        os.environ.get("CHANGE_FEED_RETENTION_HOURS", "72")
    )
    CHANGE_FEED_PRUNE_INTERVAL_MINUTES = int(
        os.environ.get("CHANGE_FEED_PRUNE_INTERVAL_MINUTES", "60")
    )


class TestConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SCHEDULER_ENABLED = False
    GOOGLE_CLIENT_ID = "test-client-id"
    GOOGLE_CLIENT_SECRET = "test-client-secret"
    AUTH_REDIRECT_ALLOWLIST = "http://localhost:3000/"
