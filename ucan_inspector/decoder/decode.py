"""Extract UCAN delegations and invocations from CAR, CBOR and JSON payloads."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from ..config import DecoderSettings, load_settings
from ..tracing import DecodeLogAdapter, LoggerLike, bind_decode_logger
from .blocks import BlockStore, decode_block
from .display import decode_identity, make_json_safe, serialize_ucan
from .envelope import classify
from .errors import SUPPORTED_FORMATS_MESSAGE, DecodeError, ProofGraphError, StrategyAttempt
from .extract import Extraction, extract_envelopes
from .ipld import coerce_bytes, decode_cbor, loads_dag_json
from .resolve import ProofResolver
from .sniff import iter_byte_candidates, split_multipart

__all__ = [
    "DecodeResult",
    "FORMAT_CAR",
    "FORMAT_CBOR",
    "FORMAT_JSON",
    "FORMAT_MULTIPART",
    "decode_car",
    "decode_payload",
    "decode_payload_bytes",
    "decode_payload_message",
    "decode_payload_text",
]

FORMAT_CAR = "car"
FORMAT_CBOR = "cbor"
FORMAT_JSON = "json"
FORMAT_MULTIPART = "multipart"

Payload = Union[str, bytes, bytearray, memoryview]


@dataclass
class DecodeResult:
    """UCANs found in one payload.

    ``ucans`` holds display-serialized envelopes, ``resolved`` the same
    envelopes before serialization and ``invocations`` the raw invocation
    records.
    """

    format: str
    ucans: List[Dict[str, Any]] = field(default_factory=list)
    resolved: List[Any] = field(default_factory=list)
    invocations: List[Any] = field(default_factory=list)

    @property
    def total_ucans(self) -> int:
        return len(self.ucans)

    @property
    def has_invocations(self) -> bool:
        return bool(self.invocations)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "format": self.format,
            "ucans": list(self.ucans),
            "totalUCANs": self.total_ucans,
            "hasInvocations": self.has_invocations,
        }
        if self.invocations:
            payload["invocations"] = [make_json_safe(item) for item in self.invocations]
        return payload


@dataclass
class _DecodeContext:
    settings: DecoderSettings
    logger: DecodeLogAdapter
    attempts: List[StrategyAttempt] = field(default_factory=list)

    def record(self, strategy: str, encoding: str, reason: Any) -> None:
        message = str(reason) or type(reason).__name__
        self.attempts.append(StrategyAttempt(strategy, encoding, message))
        self.logger.debug("%s strategy (%s) did not apply: %s", strategy, encoding, message)


@dataclass
class _Found:
    format: str
    ucans: List[Any]
    invocations: List[Any]
    store: Optional[BlockStore] = None
    resolved: List[Any] = field(default_factory=list)


def _scan_car(data: bytes, ctx: _DecodeContext) -> _Found:
    store = BlockStore.from_car(data, logger=ctx.logger)
    found = Extraction()
    block_level = 0
    for block in store.blocks():
        try:
            value = decode_block(block)
        except (ValueError, EOFError) as exc:
            ctx.logger.debug("Ignoring non-CBOR block %s: %s", block.key, exc)
            continue
        envelope = classify(value)
        if envelope.is_ucan:
            block_level += 1
            found.ucans.append(value)
            ctx.logger.debug(
                "Block %s holds a UCAN issued by %s.", block.key, decode_identity(envelope.ucan.iss)
            )
            continue
        found.extend(
            extract_envelopes(value, None, max_depth=ctx.settings.max_depth, logger=ctx.logger)
        )

    ucans = found.ucans if block_level else []
    return _Found(FORMAT_CAR, ucans, found.invocations, store)


def _classify_car(data: bytes, ctx: _DecodeContext) -> _Found:
    found = _scan_car(data, ctx)
    if not found.ucans:
        raise ValueError("no block decodes to a UCAN")
    return found


def _classify_cbor(data: bytes, ctx: _DecodeContext) -> _Found:
    value = decode_cbor(data)
    extraction = extract_envelopes(value, None, max_depth=ctx.settings.max_depth, logger=ctx.logger)
    if not extraction.ucans:
        raise ValueError("decoded CBOR value contains no UCAN")
    return _Found(FORMAT_CBOR, extraction.ucans, extraction.invocations)


ContainerClassifier = Callable[[bytes, _DecodeContext], _Found]

# Most specific first: CAR headers are unambiguous, CBOR accepts far more.
BYTE_CLASSIFIERS: Tuple[Tuple[str, ContainerClassifier], ...] = (
    (FORMAT_CAR, _classify_car),
    (FORMAT_CBOR, _classify_cbor),
)


def _resolve_all(found: _Found, ctx: _DecodeContext) -> _Found:
    if not ctx.settings.resolve_proofs:
        found.resolved = list(found.ucans)
        return found
    resolver = ProofResolver(
        found.store,
        max_depth=ctx.settings.max_depth,
        max_nodes=ctx.settings.max_nodes,
        logger=ctx.logger,
    )
    found.resolved = [resolver.resolve(ucan) for ucan in found.ucans]
    return found


def _run_byte_classifiers(data: bytes, encoding: str, ctx: _DecodeContext) -> Optional[_Found]:
    for name, classifier in BYTE_CLASSIFIERS:
        try:
            return _resolve_all(classifier(data, ctx), ctx)
        except Exception as exc:  # pylint: disable=broad-except
            ctx.record(name, encoding, exc)
    return None


def _classify_json(text: str, ctx: _DecodeContext) -> Optional[_Found]:
    try:
        document = loads_dag_json(text)
        extraction = extract_envelopes(
            document, None, max_depth=ctx.settings.max_depth, logger=ctx.logger
        )
        if not extraction.ucans:
            raise ValueError("document contains no UCAN")
        return _resolve_all(_Found(FORMAT_JSON, extraction.ucans, extraction.invocations), ctx)
    except Exception as exc:  # pylint: disable=broad-except
        ctx.record(FORMAT_JSON, FORMAT_JSON, exc)
        return None


def _looks_like_text(data: bytes) -> Optional[str]:
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    if all(char.isprintable() or char.isspace() for char in text):
        return text
    return None


def _classify_multipart(data: bytes, encoding: str, ctx: _DecodeContext) -> Optional[_Found]:
    parts = split_multipart(data)
    if parts is None:
        return None

    combined = _Found(FORMAT_MULTIPART, [], [])
    for index, part in enumerate(parts):
        label = part.name or str(index)
        text = _looks_like_text(part.body)
        if text is not None and text.strip():
            found = _classify_text_layers(text, ctx)
        elif part.body:
            found = _run_byte_classifiers(part.body, "binary", ctx)
        else:
            found = None
        if found is None:
            ctx.logger.debug("Multipart part %s carries no UCAN.", label)
            continue
        ctx.logger.debug("Multipart part %s decoded as %s.", label, found.format)
        combined.ucans.extend(found.ucans)
        combined.resolved.extend(found.resolved)
        combined.invocations.extend(found.invocations)

    if not combined.ucans:
        ctx.record(FORMAT_MULTIPART, encoding, f"none of {len(parts)} part(s) carries a UCAN")
        return None
    return combined


def _classify_text_layers(text: str, ctx: _DecodeContext) -> Optional[_Found]:
    for candidate in iter_byte_candidates(text, ctx.settings):
        found = _run_byte_classifiers(candidate.data, candidate.encoding, ctx)
        if found is not None:
            ctx.logger.debug("Payload decoded as %s from %s text.", found.format, candidate.encoding)
            return found
    return _classify_json(text.strip(), ctx)


def _build_result(found: _Found, ctx: _DecodeContext) -> DecodeResult:
    result = DecodeResult(
        format=found.format,
        ucans=[serialize_ucan(ucan) for ucan in found.resolved],
        resolved=list(found.resolved),
        invocations=list(found.invocations),
    )
    ctx.logger.info(
        "Decoded %d UCAN(s) and %d invocation(s) from %s payload.",
        result.total_ucans,
        len(result.invocations),
        result.format,
    )
    return result


def _new_context(
    settings: Optional[DecoderSettings], logger: Optional[LoggerLike]
) -> _DecodeContext:
    return _DecodeContext(settings=settings or load_settings(), logger=bind_decode_logger(logger))


def _fail(ctx: _DecodeContext) -> DecodeError:
    ctx.logger.info("No UCAN found after %d attempt(s).", len(ctx.attempts))
    return DecodeError(
        f"Unable to extract UCANs from payload. {SUPPORTED_FORMATS_MESSAGE}", ctx.attempts
    )


def decode_payload_text(
    value: str,
    *,
    settings: Optional[DecoderSettings] = None,
    logger: Optional[LoggerLike] = None,
) -> DecodeResult:
    """Decode pasted text: base64, base64url, hex, raw binary or JSON."""

    ctx = _new_context(settings, logger)
    trimmed = value.strip()
    if not trimmed:
        raise DecodeError("Decoder input is empty.")

    found = _classify_multipart(trimmed.encode("utf-8", "surrogateescape"), "text", ctx)
    if found is None:
        found = _classify_text_layers(trimmed, ctx)
    if found is None:
        raise _fail(ctx)
    return _build_result(found, ctx)


def decode_payload_bytes(
    data: Union[bytes, bytearray, memoryview],
    *,
    settings: Optional[DecoderSettings] = None,
    logger: Optional[LoggerLike] = None,
) -> DecodeResult:
    """Decode a binary blob: a CAR archive, raw CBOR or a multipart body."""

    ctx = _new_context(settings, logger)
    payload = bytes(data)
    if not payload:
        raise DecodeError("Decoder input is empty.")

    found = _classify_multipart(payload, "binary", ctx)
    if found is None:
        found = _run_byte_classifiers(payload, "binary", ctx)
    if found is None:
        raise _fail(ctx)
    return _build_result(found, ctx)


def decode_payload(
    payload: Payload,
    *,
    settings: Optional[DecoderSettings] = None,
    logger: Optional[LoggerLike] = None,
) -> DecodeResult:
    if isinstance(payload, str):
        return decode_payload_text(payload, settings=settings, logger=logger)
    data = coerce_bytes(payload)
    if data is None:
        raise TypeError(f"Unsupported payload type: {type(payload).__name__}")
    return decode_payload_bytes(data, settings=settings, logger=logger)


def decode_car(
    data: Union[bytes, bytearray, memoryview],
    *,
    settings: Optional[DecoderSettings] = None,
    logger: Optional[LoggerLike] = None,
) -> DecodeResult:
    """Decode a CAR file, scanning every block rather than trusting the roots."""

    ctx = _new_context(settings, logger)
    try:
        found = _scan_car(bytes(data), ctx)
    except ValueError as exc:
        raise DecodeError(f"Invalid CAR file: {exc}") from exc
    if not found.ucans:
        raise DecodeError("No UCANs found in CAR file.")
    try:
        _resolve_all(found, ctx)
    except ProofGraphError as exc:
        raise DecodeError(f"Unable to resolve proofs: {exc}") from exc
    return _build_result(found, ctx)


def decode_payload_message(
    payload: Payload,
    *,
    settings: Optional[DecoderSettings] = None,
    logger: Optional[LoggerLike] = None,
) -> Dict[str, Any]:
    """Decode ``payload`` into a message for a presentation layer; never raises."""

    log = bind_decode_logger(logger)
    try:
        result = decode_payload(payload, settings=settings, logger=log)
    except (ValueError, TypeError) as exc:
        return {"success": False, "error": str(exc)}
    except Exception as exc:  # pylint: disable=broad-except
        log.exception("Failed to decode payload: %s", exc)
        return {"success": False, "error": "Unable to decode payload."}
    return {"success": True, **result.to_dict()}
