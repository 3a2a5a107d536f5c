"""OAuth2 client-credentials token exchange against the identity provider."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

import httpx

from calling.errors import AuthError, ConfigError
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)

# Tokens are refreshed this many seconds before they expire.
_EXPIRY_MARGIN_SECONDS = 60.0


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at - _EXPIRY_MARGIN_SECONDS


class IdentityProvider:
    """Acquires bearer tokens per tenant and caches them until shortly before expiry."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._tokens: dict[str, AccessToken] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _credentials(self) -> tuple[str, str]:
        settings = self._settings
        if not settings.client_id or not settings.client_secret:
            raise ConfigError("Client ID and Client Secret must be configured.")
        return settings.client_id, settings.client_secret

    def _token_url(self, tenant_id: str) -> str:
        return f"{self._settings.login_base_url.rstrip('/')}/{tenant_id}/oauth2/v2.0/token"

    async def get_access_token(self, tenant_id: str | None) -> str:
        tenant = tenant_id or self._settings.identity_tenant_id
        if not tenant:
            raise ConfigError("No tenant id on the call and IDENTITY_TENANT_ID is not configured.")

        async with self._locks.setdefault(tenant, asyncio.Lock()):
            cached = self._tokens.get(tenant)
            if cached is not None and cached.is_valid(time.monotonic()):
                return cached.value

            token = await self._request_token(tenant)
            self._tokens[tenant] = token
            return token.value

    async def _request_token(self, tenant_id: str) -> AccessToken:
        client_id, client_secret = self._credentials()
        form = {
            "client_id": client_id,
            "scope": self._settings.token_scope,
            "client_secret": client_secret,
            "grant_type": "client_credentials",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._settings.token_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(self._token_url(tenant_id), data=form)
        except httpx.HTTPError as exc:
            LOGGER.error("Token request for tenant %s failed: %s", tenant_id, exc)
            raise AuthError(f"Token request failed: {exc}") from exc

        if response.is_error:
            raise AuthError(f"Failed to get access token: {response.status_code} - {response.text}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Token response is not valid JSON.") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            raise AuthError("Access token not found in response.")

        try:
            expires_in = float(payload.get("expires_in", 3599))
        except (TypeError, ValueError):
            expires_in = 3599.0

        LOGGER.info("Acquired access token for tenant %s (expires in %.0fs)", tenant_id, expires_in)
        return AccessToken(value=token, expires_at=time.monotonic() + expires_in)
