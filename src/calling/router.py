"""Ack-first ingestion of webhook notification batches."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from typing import Any

from pydantic import ValidationError

from calling.coordinator import CallLifecycleCoordinator
from calling.models import Ack, Notification, WebhookBatch
from media.extraction import PayloadExtractor

LOGGER = logging.getLogger(__name__)


class NotificationRouter:
    """Acknowledges a batch immediately and processes it on a background task.

    Each batch becomes one task that walks its notifications in order. Every
    notification gets two supervised steps (lifecycle, media); a failure in
    one is logged and never stops the other or the rest of the batch.
    """

    def __init__(self, coordinator: CallLifecycleCoordinator) -> None:
        self._coordinator = coordinator
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def ingest(self, batch: WebhookBatch) -> Ack:
        notifications = list(batch.value)
        LOGGER.info("Callback received with %d notification(s)", len(notifications))
        if notifications:
            task = asyncio.get_running_loop().create_task(self._process_batch(notifications))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return Ack(received=len(notifications))

    async def drain(self) -> None:
        """Wait until every accepted batch has been processed."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _process_batch(self, items: list[Any]) -> None:
        for index, item in enumerate(items):
            try:
                notification = Notification.model_validate(item)
            except ValidationError as exc:
                LOGGER.warning("Malformed notification %d skipped for call control: %s", index, exc)
                if isinstance(item, Mapping):
                    await self._supervise("media", index, self._feed_media(None, item))
                continue

            LOGGER.info(
                "Notification resource: %s, changeType: %s",
                notification.resource,
                notification.change_type,
            )
            await self._supervise("lifecycle", index, self._coordinator.handle_notification(notification))
            await self._supervise("media", index, self._feed_media(notification.call_id, notification.raw))

    @staticmethod
    async def _supervise(step: str, index: int, work: Awaitable[None]) -> None:
        try:
            await work
        except Exception:
            LOGGER.exception("Error processing %s step of notification %d", step, index)

    async def _feed_media(self, call_id: str | None, raw: Mapping[str, Any]) -> None:
        session = self._coordinator.session_for_media(call_id)
        result = PayloadExtractor(session).extract_from_notification(raw)
        if result is not None and result.chunks and session is None:
            LOGGER.warning(
                "Dropped %d audio bytes: no recognition session for call %s",
                result.total_bytes,
                call_id,
            )
