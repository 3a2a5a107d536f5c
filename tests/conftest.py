from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from calling.errors import TranscriptionFailedError  # noqa: E402
from speech.engine import ContinuousRecognizer, RecognitionListener, SpeechEngine  # noqa: E402


class FakeRecognizer(ContinuousRecognizer):
    """Recognizer that records audio and confirms stop synchronously."""

    def __init__(self, listener: RecognitionListener, *, start_error: Exception | None = None) -> None:
        self.listener = listener
        self.start_error = start_error
        self.chunks: list[bytes] = []
        self.started = False
        self.input_closed = False
        self.stop_requested = False
        self.close_calls = 0

    def start(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    def close_input(self) -> None:
        self.input_closed = True

    def request_stop(self) -> None:
        self.stop_requested = True
        self.listener.handle_session_stopped()

    def close(self) -> None:
        self.close_calls += 1


class FakeSpeechEngine(SpeechEngine):
    synthesis_mime = "audio/mpeg"

    def __init__(self) -> None:
        self.recognizers: list[FakeRecognizer] = []
        self.start_error: Exception | None = None
        self.open_error: Exception | None = None
        self.recognize_error: Exception | None = None
        self.synthesized: list[tuple[str, str | None]] = []

    def recognize_once(self, audio: bytes) -> str:
        if self.recognize_error is not None:
            raise self.recognize_error
        if not audio:
            raise TranscriptionFailedError("Audio buffer must not be empty.")
        return "hello world"

    def open_continuous(self, listener: RecognitionListener) -> FakeRecognizer:
        if self.open_error is not None:
            raise self.open_error
        recognizer = FakeRecognizer(listener, start_error=self.start_error)
        self.recognizers.append(recognizer)
        return recognizer

    def synthesize(self, text: str, voice: str | None = None) -> bytes:
        self.synthesized.append((text, voice))
        return b"ID3FAKEMP3"


class FakeIdentity:
    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.tenants: list[str | None] = []

    async def get_access_token(self, tenant_id: str | None) -> str:
        self.tenants.append(tenant_id)
        if self.error is not None:
            raise self.error
        return "token-123"


class FakeCallingApi:
    def __init__(self, answer_error: Exception | None = None) -> None:
        self.answer_error = answer_error
        self.answered: list[tuple[str, str, str]] = []
        self.subscribed: list[tuple[str, str]] = []

    def callback_uri(self) -> str:
        return "https://bot.example.com/api/calling/callback"

    async def answer_call(self, call_id: str, callback_uri: str, access_token: str) -> None:
        if self.answer_error is not None:
            raise self.answer_error
        self.answered.append((call_id, callback_uri, access_token))

    async def subscribe_to_media(self, call_id: str, access_token: str) -> None:
        self.subscribed.append((call_id, access_token))


@pytest.fixture()
def fake_engine() -> FakeSpeechEngine:
    return FakeSpeechEngine()


@pytest.fixture()
def fake_identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture()
def fake_calling_api() -> FakeCallingApi:
    return FakeCallingApi()


@pytest.fixture()
def test_settings():
    from config.settings import Settings

    return Settings(
        _env_file=None,
        environment="test",
        speech_service_key="key",
        speech_service_region="westeurope",
        bot_callback_uri="https://bot.example.com/api/calling/callback",
        client_id="app-id",
        client_secret="app-secret",
        identity_tenant_id="tenant-default",
        recognition_stop_timeout_seconds=1.0,
    )


@pytest.fixture()
def coordinator(fake_engine, fake_identity, fake_calling_api, test_settings):
    from calling.coordinator import CallLifecycleCoordinator

    transcripts: list = []
    instance = CallLifecycleCoordinator(
        fake_engine,
        fake_identity,
        fake_calling_api,
        settings=test_settings,
        transcript_sink=transcripts.append,
    )
    instance.transcripts = transcripts
    return instance


@pytest.fixture(scope="session")
def app():
    # Must be set before the cached settings are created.
    os.environ["ENVIRONMENT"] = "test"
    os.environ["SPEECH_PROVIDER"] = "azure"
    os.environ["LOG_LEVEL"] = "DEBUG"

    import importlib

    from config.settings import get_settings

    get_settings.cache_clear()
    sys.modules.pop("main", None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def client(app, fake_engine):
    # Override the engine so tests never reach the speech SDK.
    import api.dependencies as deps

    app.dependency_overrides[deps.get_speech_engine] = lambda: fake_engine

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
