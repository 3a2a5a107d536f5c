"""Best-effort extraction of base64 audio from call notifications.

The platform does not fix the shape of media notifications, so the search is
expressed as an ordered list of rules walked over a tagged value
(object / array / string / other). Each rule either claims the payload
(returning found / not found) or passes it on to the next rule.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from calling.errors import ExtractionMiss

LOGGER = logging.getLogger(__name__)

# Field names scanned for an inline base64 chunk, in priority order.
AUDIO_FIELDS: tuple[str, ...] = ("data", "content", "body", "audio", "chunk", "payload")
# Fields whose value is walked again with the same rules.
ALIAS_FIELDS: tuple[str, ...] = ("mediaChunks", "mediaPackets")
# Fallback roots tried when the node itself yields nothing.
FALLBACK_ROOTS: tuple[str, ...] = ("resourceData", "media", "body", "data")
# Presence of any of these marks a notification as possibly carrying media.
MEDIA_HINT_FIELDS: tuple[str, ...] = ("media", "mediaStreams", "content", "data", "body")


class NodeKind(Enum):
    OBJECT = "object"
    ARRAY = "array"
    STRING = "string"
    OTHER = "other"


def classify(node: Any) -> NodeKind:
    if isinstance(node, Mapping):
        return NodeKind.OBJECT
    if isinstance(node, (list, tuple)):
        return NodeKind.ARRAY
    if isinstance(node, str):
        return NodeKind.STRING
    return NodeKind.OTHER


def decode_base64(text: str) -> bytes | None:
    """Decode standard or URL-safe base64, tolerating whitespace and missing padding.

    Returns None for empty input, malformed input, or input decoding to zero bytes.
    """

    cleaned = "".join(text.split())
    if not cleaned:
        return None
    cleaned += "=" * (-len(cleaned) % 4)
    altchars = b"-_" if ("-" in cleaned or "_" in cleaned) else None
    try:
        decoded = base64.b64decode(cleaned, altchars=altchars, validate=True)
    except (binascii.Error, ValueError):
        return None
    return decoded or None


class AudioSink(Protocol):
    def write(self, chunk: bytes) -> Any:  # pragma: no cover - protocol stub
        ...


@dataclass
class ExtractedAudio:
    """Chunks forwarded during one extraction, with the paths they came from."""

    chunks: list[bytes] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    stream_labels: list[str] = field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(len(chunk) for chunk in self.chunks)

    def joined(self) -> bytes:
        return b"".join(self.chunks)


class _Walk:
    """State of one extraction: collected chunks and the sink they go to."""

    def __init__(self, sink: AudioSink | None) -> None:
        self._sink = sink
        self.found = ExtractedAudio()

    def emit_base64(self, text: str, source: str) -> bool:
        chunk = decode_base64(text)
        if chunk is None:
            LOGGER.warning("Undecodable media payload at %s (%d chars)", source, len(text))
            return False
        LOGGER.info("Feeding audio chunk from %s (bytes=%d)", source, len(chunk))
        self.found.chunks.append(chunk)
        self.found.sources.append(source)
        if self._sink is not None:
            self._sink.write(chunk)
        return True

    def feed_if_found(self, payload: Any, source: str) -> bool:
        kind = classify(payload)
        for rule in RULES:
            outcome = rule(self, payload, kind, source)
            if outcome is not None:
                return outcome
        return False


# A rule returns True/False to settle the payload, or None to defer to the next rule.
Rule = Callable[[_Walk, Any, NodeKind, str], "bool | None"]


def _sequence_rule(walk: _Walk, payload: Any, kind: NodeKind, source: str) -> bool | None:
    if kind is not NodeKind.ARRAY:
        return None
    for index, item in enumerate(payload):
        walk.feed_if_found(item, f"{source}[{index}]")
    # Batched frames: the container counts as found even if no element decoded.
    return True


def _audio_field_rule(walk: _Walk, payload: Any, kind: NodeKind, source: str) -> bool | None:
    if kind is not NodeKind.OBJECT:
        return None
    for name in AUDIO_FIELDS:
        value = payload.get(name)
        if isinstance(value, str) and walk.emit_base64(value, f"{source}.{name}"):
            return True
    return None


def _inline_string_rule(walk: _Walk, payload: Any, kind: NodeKind, source: str) -> bool | None:
    if kind is not NodeKind.STRING:
        return None
    return True if walk.emit_base64(payload, source) else None


def _alias_rule(walk: _Walk, payload: Any, kind: NodeKind, source: str) -> bool | None:
    if kind is not NodeKind.OBJECT:
        return None
    for name in ALIAS_FIELDS:
        if name in payload:
            return walk.feed_if_found(payload[name], f"{source}.{name}")
    return None


def _media_streams_rule(walk: _Walk, payload: Any, kind: NodeKind, source: str) -> bool | None:
    if kind is not NodeKind.OBJECT:
        return None
    streams = payload.get("mediaStreams")
    if classify(streams) is not NodeKind.ARRAY:
        return None
    labels = []
    for stream in streams:
        label = stream.get("label") if isinstance(stream, Mapping) else None
        labels.append(str(label) if label is not None else "unknown")
    walk.found.stream_labels.extend(labels)
    LOGGER.info("mediaStreams metadata found at %s: %s", source, ", ".join(labels))
    # Metadata only, never audio.
    return None


RULES: tuple[Rule, ...] = (
    _sequence_rule,
    _audio_field_rule,
    _inline_string_rule,
    _alias_rule,
    _media_streams_rule,
)


def has_media_content(node: Any) -> bool:
    return isinstance(node, Mapping) and any(name in node for name in MEDIA_HINT_FIELDS)


def media_root(notification: Mapping[str, Any]) -> Any | None:
    """Pick the subtree to search for audio, or None for plain lifecycle notifications."""

    resource = notification.get("resource")
    resource_data = notification.get("resourceData")
    if isinstance(resource, str) and "/media" in resource.lower():
        return resource_data if resource_data is not None else notification
    if has_media_content(resource_data):
        return resource_data
    if has_media_content(notification):
        return notification
    return None


def _describe(node: Any) -> str:
    try:
        return json.dumps(node, default=str)
    except (TypeError, ValueError):
        return repr(node)


class PayloadExtractor:
    """Finds audio in a notification tree and forwards each chunk to ``sink``."""

    def __init__(self, sink: AudioSink | None = None) -> None:
        self._sink = sink

    def extract(self, node: Any) -> ExtractedAudio | None:
        walk = _Walk(self._sink)
        if walk.feed_if_found(node, "root"):
            return walk.found

        if isinstance(node, Mapping):
            for name in FALLBACK_ROOTS:
                if name in node and walk.feed_if_found(node[name], name):
                    return walk.found

        LOGGER.info(
            "%s Full object for debugging: %s",
            ExtractionMiss.default_detail,
            _describe(node),
        )
        return None

    def extract_from_notification(self, notification: Mapping[str, Any]) -> ExtractedAudio | None:
        root = media_root(notification)
        if root is None:
            LOGGER.debug(
                "Non-media notification: %s %s",
                notification.get("changeType"),
                notification.get("resource"),
            )
            return None
        return self.extract(root)
