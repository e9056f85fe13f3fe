"""Rendering-safe serialization of resolved UCAN trees."""
from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping, Optional

from cbor2 import CBORSimpleValue, CBORTag, undefined
from fido2.utils import websafe_encode
from multiformats import CID, multibase

from .envelope import is_ucan
from .ipld import canonical_cid, coerce_bytes

__all__ = [
    "DID_TAG",
    "EXP_INHERITED",
    "decode_identity",
    "format_expiration",
    "make_json_safe",
    "serialize_for_display",
    "serialize_ucan",
]

# A missing expiry defers to the proof chain; it does not mean "never expires".
EXP_INHERITED = "inherited"

# First byte of the varint for the DID multicodec (0x0d1d); one more byte follows.
DID_TAG = 0x9D

_IDENTITY_PREFIXES = ("did:",)
_IDENTITY_FIELDS = frozenset({"iss", "aud"})
_SIGNATURE_FIELD = "s"
_EXPIRATION_FIELD = "exp"

# Multicodec varint prefix -> expected total length of a public key identity.
_DID_KEY_PREFIXES: Dict[bytes, int] = {
    b"\xed\x01": 34,  # ed25519-pub
    b"\xe7\x01": 35,  # secp256k1-pub
    b"\x80\x24": 35,  # p256-pub
}


def _try_decode_utf8(data: bytes) -> Optional[str]:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return None


def _looks_printable(text: str) -> bool:
    return all(char.isprintable() or char.isspace() for char in text)


def _render_did_key(data: bytes) -> Optional[str]:
    expected = _DID_KEY_PREFIXES.get(data[:2])
    if expected is None or len(data) != expected:
        return None
    return "did:key:" + multibase.encode(data, "base58btc")


def decode_identity(data: bytes, *, public_keys: bool = False) -> str:
    """Render binary identity bytes as text, falling back to base64url."""

    if len(data) > 2 and data[0] == DID_TAG:
        text = _try_decode_utf8(data[2:])
        if text is not None:
            return text if text.startswith("did:") else f"did:{text}"

    if public_keys:
        did_key = _render_did_key(data)
        if did_key is not None:
            return did_key

    text = _try_decode_utf8(data)
    if text is not None and (_looks_printable(text) or text.startswith(_IDENTITY_PREFIXES)):
        return text

    return websafe_encode(data)


def format_expiration(value: Any) -> Any:
    if value is None:
        return EXP_INHERITED
    if isinstance(value, bool) or not isinstance(value, int):
        return serialize_for_display(value)
    try:
        moment = datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return str(value)
    return f"{value} ({moment.isoformat()})"


def _serialize_binary(data: bytes, field: Optional[str]) -> str:
    if field == _SIGNATURE_FIELD:
        return websafe_encode(data)
    return decode_identity(data, public_keys=field in _IDENTITY_FIELDS)


def _serialize_mapping(value: Mapping[Any, Any]) -> Dict[str, Any]:
    rendered: Dict[str, Any] = {}
    for key, item in value.items():
        field = key if isinstance(key, str) else None
        rendered[str(key)] = _serialize(item, field)
    if is_ucan(value) and _EXPIRATION_FIELD not in value:
        rendered[_EXPIRATION_FIELD] = EXP_INHERITED
    return rendered


def _serialize(value: Any, field: Optional[str] = None) -> Any:
    if field == _EXPIRATION_FIELD:
        return format_expiration(value)

    raw = coerce_bytes(value)
    if raw is not None:
        return _serialize_binary(raw, field)
    if isinstance(value, CID):
        return canonical_cid(value)
    if isinstance(value, Mapping):
        return _serialize_mapping(value)
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    if isinstance(value, CBORTag):
        return {"tag": value.tag, "value": _serialize(value.value)}
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is undefined or isinstance(value, CBORSimpleValue):
        return repr(value)
    return value


def serialize_for_display(value: Any) -> Any:
    """Return a copy of ``value`` in which binary data and CIDs are text."""

    return _serialize(value)


def serialize_ucan(ucan: Mapping[str, Any]) -> Dict[str, Any]:
    return _serialize_mapping(ucan)


def make_json_safe(value: Any) -> Any:
    """Recursively convert bytes-like values and CIDs into JSON-friendly data."""
    raw = coerce_bytes(value)
    if raw is not None:
        return websafe_encode(raw)
    if isinstance(value, CID):
        return canonical_cid(value)
    if isinstance(value, Mapping):
        return {str(key): make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(item) for item in value]
    if isinstance(value, CBORTag):
        return {"tag": value.tag, "value": make_json_safe(value.value)}
    return value
