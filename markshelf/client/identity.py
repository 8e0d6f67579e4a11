from __future__ import annotations

import logging
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from markshelf.client.models import Identity, Session
from markshelf.errors import FetchError, StoreError, ValidationError


logger = logging.getLogger(__name__)


def token_from_redirect(redirect_url: str) -> str:
    """Pull the access token out of the sign-in callback redirect.

    The service appends ``#access_token=...`` on success and ``#error=...``
    when the provider refused or the user cancelled.
    """
    fragment = parse_qs(urlsplit(redirect_url).fragment)
    if "error" in fragment:
        raise ValidationError(f"sign-in failed: {fragment['error'][0]}")
    tokens = fragment.get("access_token") or []
    if not tokens or not tokens[0]:
        raise ValidationError("sign-in redirect carries no access token")
    return tokens[0]


class IdentityClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url + "/auth", timeout=timeout, transport=transport
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def sign_in_url(
        self, provider: str = "google", redirect_target: str = "/", **hints
    ) -> str:
        params = {"redirect_to": redirect_target}
        params.update({key: value for key, value in hints.items() if value})
        return f"{self.base_url}/auth/sign-in/{provider}?{urlencode(params)}"

    async def get_current_session(self, access_token: str) -> Session | None:
        try:
            response = await self._client.get(
                "/session", headers={"Authorization": f"Bearer {access_token}"}
            )
        except httpx.HTTPError as exc:
            raise FetchError(f"identity service unreachable: {exc}") from exc
        if response.status_code != 200:
            raise FetchError(f"identity service responded with {response.status_code}")
        try:
            identity = response.json().get("identity")
            if not identity:
                return None
            return Session(
                identity=Identity.from_dict(identity), access_token=access_token
            )
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            raise FetchError(f"malformed session response: {exc}") from exc

    async def sign_out(self, session: Session) -> None:
        try:
            response = await self._client.post(
                "/sign-out",
                headers={"Authorization": f"Bearer {session.access_token}"},
            )
        except httpx.HTTPError as exc:
            raise StoreError(f"identity service unreachable: {exc}") from exc
        if response.status_code != 200:
            raise StoreError(
                f"sign-out failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )
        logger.info("signed out %s", session.owner_id)
