"""Decode UCAN delegations and invocations from CAR, CBOR and JSON payloads."""
from __future__ import annotations

from .config import DecoderSettings, load_settings
from .decoder import DecodeError, DecodeResult, decode_car, decode_payload, decode_payload_message

__all__ = [
    "DecodeError",
    "DecodeResult",
    "DecoderSettings",
    "decode_car",
    "decode_payload",
    "decode_payload_message",
    "load_settings",
]
