"""Codec utilities for extracting UCANs from wire payloads."""
from .blocks import Block, BlockStore, read_car
from .decode import (
    DecodeResult,
    decode_car,
    decode_payload,
    decode_payload_bytes,
    decode_payload_message,
    decode_payload_text,
)
from .display import EXP_INHERITED, make_json_safe, serialize_for_display, serialize_ucan
from .envelope import Envelope, EnvelopeKind, UcanFields, classify, is_invocation, is_ucan
from .errors import CarFormatError, DecodeError, ProofCycleError, ProofGraphError
from .extract import Extraction, extract_envelopes
from .resolve import ProofResolver, resolve_proofs

__all__ = [
    "Block",
    "BlockStore",
    "CarFormatError",
    "DecodeError",
    "DecodeResult",
    "EXP_INHERITED",
    "Envelope",
    "EnvelopeKind",
    "Extraction",
    "ProofCycleError",
    "ProofGraphError",
    "ProofResolver",
    "UcanFields",
    "classify",
    "decode_car",
    "decode_payload",
    "decode_payload_bytes",
    "decode_payload_message",
    "decode_payload_text",
    "extract_envelopes",
    "is_invocation",
    "is_ucan",
    "make_json_safe",
    "read_car",
    "resolve_proofs",
    "serialize_for_display",
    "serialize_ucan",
]
