"""
Readable body extraction from Gmail message payloads.

Display-layer helper: every function here is total. Missing, empty or
undecodable content yields ``""``, never an exception.

Priority on each payload node:
1. an immediate ``text/plain`` part
2. an immediate ``text/html`` part, tags stripped and whitespace collapsed
3. no parts at all: the body attached to the node itself
4. nested ``parts`` (multipart containers), depth first in order
"""

from __future__ import annotations

import base64
import binascii
from typing import Any

from bs4 import BeautifulSoup

from inboxq.observability.telemetry import counter
from inboxq.storage.models import EmailMessage, MessagePart

_TEXT_PLAIN = "text/plain"
_TEXT_HTML = "text/html"

_HEADER_DEFAULTS = {"subject": "No Subject", "from": "Unknown Sender"}


def decode_base64url(data: str | None) -> str:
    """Decode Gmail's URL-safe base64 into UTF-8 text ("" when undecodable)."""
    if not data:
        return ""

    standard = data.replace("-", "+").replace("_", "/")
    standard += "=" * (-len(standard) % 4)
    try:
        raw = base64.b64decode(standard, validate=True)
    except (binascii.Error, ValueError):
        counter("gmail.decode_failed.count")
        return ""
    return raw.decode("utf-8", errors="replace")


def html_to_text(html: str) -> str:
    """Strip tags and collapse whitespace to single spaces."""
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "head"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def _part_data(part: MessagePart) -> str | None:
    return part.body.data if part.body else None


def _first_of_type(parts: tuple[MessagePart, ...], mime_type: str) -> str:
    for part in parts:
        if part.mime_type == mime_type:
            text = decode_base64url(_part_data(part))
            if text:
                return text
    return ""


def _extract(node: MessagePart) -> str:
    if not node.parts:
        text = decode_base64url(_part_data(node))
        return html_to_text(text) if node.mime_type == _TEXT_HTML else text

    text = _first_of_type(node.parts, _TEXT_PLAIN)
    if text:
        return text

    html = _first_of_type(node.parts, _TEXT_HTML)
    if html:
        text = html_to_text(html)
        if text:
            return text

    for part in node.parts:
        if part.parts:
            text = _extract(part)
            if text:
                return text
    return ""


def extract_body(message: EmailMessage | dict[str, Any] | None) -> str:
    """
    Extract the human-readable body of a Gmail message

    Accepts an ``EmailMessage`` or a raw Gmail API dict.
    """
    if message is None:
        return ""
    if not isinstance(message, EmailMessage):
        try:
            message = EmailMessage.model_validate(message)
        except ValueError:
            counter("gmail.decode_failed.count")
            return ""

    text = _extract(message.payload)
    if not text:
        counter("gmail.decode_empty.count")
    return text


def get_header(message: EmailMessage, name: str) -> str:
    """Case-insensitive header value with display defaults for Subject/From."""
    return message.header(name) or _HEADER_DEFAULTS.get(name.lower(), "")
