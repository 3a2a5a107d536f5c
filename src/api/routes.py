"""FastAPI routes for the bot endpoint, speech utilities and health."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile

from api.calling_routes import router as calling_router
from api.dependencies import get_coordinator, get_speech_engine
from api.schemas import (
    Activity,
    BotReply,
    HealthResponse,
    MessagesResponse,
    RecognizeResponse,
    SynthesizeRequest,
)
from calling.coordinator import CallLifecycleCoordinator
from calling.errors import CallingAgentError
from speech.engine import SpeechEngine

LOGGER = logging.getLogger(__name__)

WELCOME_TEXT = "Hello and welcome! I'm your VoxRepo Agent assistant."

SUPPORTED_AUDIO_TYPES = {"audio/wav", "audio/x-wav", "audio/wave", "application/octet-stream"}

router = APIRouter()
router.include_router(calling_router)


def _to_http_error(exc: CallingAgentError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail)


@router.get("/health", response_model=HealthResponse)
async def health(
    coordinator: CallLifecycleCoordinator = Depends(get_coordinator),
) -> HealthResponse:
    return HealthResponse(active_calls=len(coordinator.active_call_ids()))


@router.post("/messages", response_model=MessagesResponse)
async def bot_messages(activity: Activity) -> MessagesResponse:
    LOGGER.info("Processing %s activity", activity.type)
    replies: list[BotReply] = []

    if activity.type == "message":
        text = (activity.text or "").strip()
        replies.append(
            BotReply(text=f"I received your message: '{text}'. This is a response from the VoxRepo Agent.")
        )
    elif activity.type == "conversationUpdate":
        recipient_id = activity.recipient.id if activity.recipient else None
        for member in activity.members_added:
            if member.id != recipient_id:
                replies.append(BotReply(text=WELCOME_TEXT))

    return MessagesResponse(replies=replies)


@router.post("/speech/recognize", response_model=RecognizeResponse)
async def recognize_upload(
    audio_file: UploadFile = File(...),
    engine: SpeechEngine = Depends(get_speech_engine),
) -> RecognizeResponse:
    if audio_file.content_type not in SUPPORTED_AUDIO_TYPES:
        raise HTTPException(status_code=400, detail="Unsupported audio format.")

    audio_bytes = await audio_file.read()
    if not audio_bytes:
        raise HTTPException(status_code=400, detail="Audio file is empty.")

    try:
        text = await asyncio.to_thread(engine.recognize_once, audio_bytes)
    except CallingAgentError as exc:
        LOGGER.exception("One-shot recognition failed: %s", exc)
        raise _to_http_error(exc) from exc

    return RecognizeResponse(text=text)


@router.post("/speech/synthesize")
async def synthesize_text(
    payload: SynthesizeRequest,
    engine: SpeechEngine = Depends(get_speech_engine),
) -> Response:
    try:
        audio = await asyncio.to_thread(engine.synthesize, payload.text, payload.voice)
    except CallingAgentError as exc:
        LOGGER.exception("Speech synthesis failed: %s", exc)
        raise _to_http_error(exc) from exc

    return Response(content=audio, media_type=engine.synthesis_mime)
