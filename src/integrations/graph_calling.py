"""Call-control requests against the Graph communications API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from calling.errors import CallControlError, ConfigError
from config.settings import Settings, get_settings

LOGGER = logging.getLogger(__name__)


class GraphCallingClient:
    """Plain authenticated HTTP calls for answering calls and media subscription."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._transport = transport
        self._base_url = self._settings.graph_base_url.rstrip("/")

    def callback_uri(self) -> str:
        if not self._settings.bot_callback_uri:
            raise ConfigError("BOT_CALLBACK_URI is required to answer calls.")
        return self._settings.bot_callback_uri

    async def answer_call(self, call_id: str, callback_uri: str, access_token: str) -> None:
        body = {
            "callbackUri": callback_uri,
            "mediaConfig": {"@odata.type": "#microsoft.graph.serviceHostedMediaConfig"},
            "acceptedModalities": ["audio"],
        }
        await self._post(f"/communications/calls/{call_id}/answer", body, access_token, action="answer call")
        LOGGER.info("Call %s answered", call_id)

    async def subscribe_to_media(self, call_id: str, access_token: str) -> None:
        path = self._settings.media_subscription_path.format(call_id=call_id)
        await self._post(path, {"clientContext": call_id}, access_token, action="subscribe to media")
        LOGGER.info("Media subscription requested for call %s", call_id)

    async def _post(self, path: str, body: dict[str, Any], access_token: str, *, action: str) -> httpx.Response:
        url = f"{self._base_url}/{path.lstrip('/')}"
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.graph_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as exc:
            LOGGER.error("Failed to %s: %s", action, exc)
            raise CallControlError(f"Failed to {action}: {exc}") from exc

        LOGGER.info("%s response status: %s", action.capitalize(), response.status_code)
        if response.is_error:
            raise CallControlError(f"Failed to {action}: {response.status_code} - {response.text}")
        return response
