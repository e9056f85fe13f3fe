"""DAG-CBOR and DAG-JSON decoding helpers."""
from __future__ import annotations

import base64
import binascii
import json
from io import BytesIO
from typing import Any, Dict, Optional

import cbor2
from fido2.utils import ByteBuffer
from multiformats import CID

__all__ = [
    "CID_CBOR_TAG",
    "canonical_cid",
    "coerce_bytes",
    "decode_cbor",
    "loads_dag_json",
]

# Tag 42 wraps a binary CID prefixed with the identity multibase byte 0x00.
CID_CBOR_TAG = 42


def coerce_bytes(value: Any) -> Optional[bytes]:
    if isinstance(value, ByteBuffer):
        return value.getvalue()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return None


def canonical_cid(cid: CID) -> str:
    """Return the string form used to index and display ``cid``."""

    if cid.version == 0:
        return cid.encode()
    return cid.encode("base32")


def _cid_tag_hook(decoder: Any, tag: cbor2.CBORTag) -> Any:
    if tag.tag != CID_CBOR_TAG:
        return tag
    raw = coerce_bytes(tag.value)
    if not raw or raw[0] != 0x00:
        return tag
    try:
        return CID.decode(raw[1:])
    except Exception:  # pylint: disable=broad-except
        return tag


def decode_cbor(data: bytes) -> Any:
    """Decode exactly one CBOR item, turning tag 42 links into CIDs.

    Trailing bytes after the first item make the whole payload invalid.
    """

    if not data:
        raise ValueError("Empty CBOR payload.")

    fp = BytesIO(data)
    decoder = cbor2.CBORDecoder(fp, tag_hook=_cid_tag_hook)
    value = decoder.decode()
    consumed = fp.tell()
    if consumed != len(data):
        raise ValueError(f"Trailing {len(data) - consumed} byte(s) after CBOR payload.")
    return value


def _decode_dag_json_bytes(value: str) -> Optional[bytes]:
    cleaned = value.strip()
    normalized = cleaned.replace("-", "+").replace("_", "/")
    padding = (-len(normalized)) % 4
    try:
        return base64.b64decode(normalized + "=" * padding, validate=True)
    except (ValueError, binascii.Error):
        return None


def _dag_json_hook(obj: Dict[str, Any]) -> Any:
    if len(obj) != 1 or "/" not in obj:
        return obj

    link = obj["/"]
    if isinstance(link, str):
        try:
            return CID.decode(link)
        except Exception:  # pylint: disable=broad-except
            return obj
    if isinstance(link, dict) and set(link) == {"bytes"} and isinstance(link["bytes"], str):
        decoded = _decode_dag_json_bytes(link["bytes"])
        if decoded is not None:
            return decoded
    return obj


def loads_dag_json(text: str) -> Any:
    """Parse JSON text, honouring DAG-JSON links and bytes."""

    return json.loads(text, object_hook=_dag_json_hook)
