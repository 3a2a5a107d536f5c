"""Calling webhook.

The platform posts batches of call notifications here. The handler only
enqueues the batch and answers 202; all call control and audio work happens
afterwards, so nothing downstream can change the status code.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from api.dependencies import get_notification_router
from calling.models import Ack, WebhookBatch
from calling.router import NotificationRouter

LOGGER = logging.getLogger(__name__)

router = APIRouter(prefix="/calling", tags=["calling"])


@router.post("/callback", status_code=202, response_model=Ack)
async def calling_callback(
    batch: WebhookBatch,
    notification_router: NotificationRouter = Depends(get_notification_router),
) -> Ack:
    LOGGER.debug("CALLBACK body: %s", batch.model_dump_json(by_alias=True))
    return notification_router.ingest(batch)
