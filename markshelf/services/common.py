from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from markshelf.errors import ValidationError


ALLOWED_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}


def clean_title(raw: str | None) -> str:
    title = (raw or "").strip()
    if not title:
        raise ValidationError("Title is required.")
    return title


def canonicalize_url(raw: str | None) -> str:
    value = (raw or "").strip()
    if not value:
        raise ValidationError("URL is required.")
    if any(ch.isspace() for ch in value):
        raise ValidationError("URL must not contain whitespace.")

    try:
        parsed = urlsplit(value)
        port = parsed.port
    except ValueError as exc:
        raise ValidationError(f"URL could not be parsed: {exc}") from exc

    scheme = parsed.scheme.lower()
    if scheme not in ALLOWED_SCHEMES:
        raise ValidationError(
            "URL must be absolute and start with http:// or https://."
        )

    host = (parsed.hostname or "").lower()
    if not host:
        raise ValidationError("URL must include a host.")

    netloc = f"[{host}]" if ":" in host else host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"
    if parsed.username:
        userinfo = parsed.username
        if parsed.password:
            userinfo = f"{userinfo}:{parsed.password}"
        netloc = f"{userinfo}@{netloc}"

    path = parsed.path or "/"
    query_items = sorted(parse_qsl(parsed.query, keep_blank_values=True))
    normalized_query = urlencode(query_items)
    return urlunsplit((scheme, netloc, path, normalized_query, parsed.fragment))
