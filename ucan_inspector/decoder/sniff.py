"""Classify opaque text input into candidate byte payloads."""
from __future__ import annotations

import base64
import binascii
import re
import string
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from multiformats import multibase

from ..config import DecoderSettings
from .ipld import loads_dag_json

__all__ = [
    "MultipartPart",
    "SniffedInput",
    "TEXT_STRATEGIES",
    "iter_byte_candidates",
    "sniff_text",
    "split_multipart",
]

TextStrategy = Callable[[str, DecoderSettings], Optional[bytes]]

_BASE64URL_PATTERN = re.compile(r"^[A-Za-z0-9_-]+={0,2}$")
_BASE64_PATTERN = re.compile(r"^[A-Za-z0-9+/]+={0,2}$")
_MULTIBASE_BASE64URL_PREFIX = "u"
_PRINTABLE_ASCII = frozenset(string.printable)
_BOUNDARY_LINE = re.compile(rb"^--([!-~][ -~]{0,199})\r?\n")


@dataclass(frozen=True)
class SniffedInput:
    """Outcome of sniffing one input layer.

    ``data`` holds the decoded bytes for byte-oriented strategies; the JSON
    strategy stores the parsed value in ``document`` instead.
    """

    encoding: str
    data: Optional[bytes] = None
    document: Any = None

    @property
    def is_document(self) -> bool:
        return self.data is None


def _compact(text: str) -> str:
    return "".join(text.split())


def _decode_multibase(text: str, settings: DecoderSettings) -> Optional[bytes]:
    cleaned = _compact(text)
    if not cleaned.startswith(_MULTIBASE_BASE64URL_PREFIX):
        return None
    try:
        decoded = multibase.decode(cleaned)
    except Exception:  # pylint: disable=broad-except
        return None
    return bytes(decoded) or None


def _decode_base64url(text: str, settings: DecoderSettings) -> Optional[bytes]:
    cleaned = _compact(text)
    if not cleaned or not _BASE64URL_PATTERN.match(cleaned):
        return None
    unpadded = cleaned.rstrip("=")
    try:
        decoded = base64.urlsafe_b64decode(unpadded + "=" * ((-len(unpadded)) % 4))
    except (ValueError, binascii.Error):
        return None
    if not decoded:
        return None
    if base64.urlsafe_b64encode(decoded).rstrip(b"=") != unpadded.encode("ascii"):
        return None
    return decoded


def _decode_base64(text: str, settings: DecoderSettings) -> Optional[bytes]:
    cleaned = _compact(text)
    if not cleaned or not _BASE64_PATTERN.match(cleaned):
        return None
    unpadded = cleaned.rstrip("=")
    try:
        decoded = base64.b64decode(unpadded + "=" * ((-len(unpadded)) % 4), validate=True)
    except (ValueError, binascii.Error):
        return None
    if not decoded:
        return None
    if base64.b64encode(decoded).rstrip(b"=") != unpadded.encode("ascii"):
        return None
    return decoded


def _decode_hex(text: str, settings: DecoderSettings) -> Optional[bytes]:
    cleaned = _compact(text)
    if len(cleaned) <= settings.min_hex_length or len(cleaned) % 2:
        return None
    if not all(char in string.hexdigits for char in cleaned):
        return None
    return bytes.fromhex(cleaned)


def _decode_raw_binary(text: str, settings: DecoderSettings) -> Optional[bytes]:
    """Recover bytes from binary data pasted as text (one code point per byte)."""

    if not text or all(char in _PRINTABLE_ASCII for char in text):
        return None
    if any(ord(char) > 0xFF for char in text):
        return None
    return text.encode("latin-1")


TEXT_STRATEGIES: Tuple[Tuple[str, TextStrategy], ...] = (
    ("multibase", _decode_multibase),
    ("base64url", _decode_base64url),
    ("base64", _decode_base64),
    ("hex", _decode_hex),
    ("raw", _decode_raw_binary),
)


def _strip_separator(text: str, settings: DecoderSettings) -> str:
    if settings.separator and text.startswith(settings.separator):
        return text[len(settings.separator) :]
    return text


def iter_byte_candidates(
    text: str, settings: Optional[DecoderSettings] = None
) -> Iterator[SniffedInput]:
    """Yield the bytes produced by each applicable strategy, in strategy order.

    A strategy yielding the same bytes as an earlier one is skipped.
    """

    settings = settings or DecoderSettings()
    stripped = _strip_separator(text.strip(), settings)
    seen: List[bytes] = []
    for name, strategy in TEXT_STRATEGIES:
        data = strategy(stripped, settings)
        if data is None or data in seen:
            continue
        seen.append(data)
        yield SniffedInput(encoding=name, data=data)


def _try_parse_json(value: str) -> Optional[SniffedInput]:
    try:
        return SniffedInput(encoding="json", document=loads_dag_json(value))
    except (ValueError, TypeError):
        return None


def sniff_text(text: str, settings: Optional[DecoderSettings] = None) -> Optional[SniffedInput]:
    """Return the first strategy outcome for ``text``, ending with a JSON parse."""

    for candidate in iter_byte_candidates(text, settings):
        return candidate
    return _try_parse_json(text.strip())


@dataclass(frozen=True)
class MultipartPart:
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    @property
    def name(self) -> Optional[str]:
        disposition = self.headers.get("content-disposition", "")
        match = re.search(r'name="([^"]*)"', disposition)
        return match.group(1) if match else None


def _split_part_headers(chunk: bytes) -> Tuple[Dict[str, str], bytes]:
    for separator in (b"\r\n\r\n", b"\n\n"):
        head, found, body = chunk.partition(separator)
        if not found:
            continue
        lines = head.decode("latin-1").splitlines()
        if not lines or not all(":" in line for line in lines):
            break
        headers = {}
        for line in lines:
            key, _, value = line.partition(":")
            headers[key.strip().lower()] = value.strip()
        return headers, body
    return {}, chunk


def _trim_line_break(chunk: bytes, *, leading: bool) -> bytes:
    for line_break in (b"\r\n", b"\n"):
        if leading and chunk.startswith(line_break):
            return chunk[len(line_break) :]
        if not leading and chunk.endswith(line_break):
            return chunk[: -len(line_break)]
    return chunk


def split_multipart(data: bytes) -> Optional[List[MultipartPart]]:
    """Split a MIME multipart body whose first line is its boundary.

    Returns ``None`` when ``data`` does not start with a boundary line.
    """

    match = _BOUNDARY_LINE.match(data)
    if match is None:
        return None

    delimiter = b"--" + match.group(1).rstrip()
    parts: List[MultipartPart] = []
    for chunk in data.split(delimiter)[1:]:
        if chunk.startswith(b"--"):
            break
        chunk = _trim_line_break(_trim_line_break(chunk, leading=True), leading=False)
        headers, body = _split_part_headers(chunk)
        parts.append(MultipartPart(headers=headers, body=body))
    return parts or None
