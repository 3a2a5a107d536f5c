"""SSML construction for speech synthesis."""

from __future__ import annotations

from xml.sax.saxutils import escape

_SSML_ENTITIES = {'"': "&quot;", "'": "&apos;"}


def escape_ssml_text(text: str) -> str:
    """Escape ``< > & " '`` for inclusion in SSML."""

    return escape(text, _SSML_ENTITIES)


def build_ssml(text: str, voice_name: str, *, language: str = "en-US") -> str:
    voice = escape(voice_name, _SSML_ENTITIES)
    lang = escape(language, _SSML_ENTITIES)
    return (
        f'<speak version="1.0" xmlns="http://www.w3.org/2001/10/synthesis" xml:lang="{lang}">'
        f'<voice name="{voice}">'
        f'<prosody rate="medium" pitch="medium">{escape_ssml_text(text)}</prosody>'
        "</voice>"
        "</speak>"
    )
