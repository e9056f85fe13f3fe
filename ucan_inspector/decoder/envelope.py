"""Structural detection of UCAN and invocation envelopes."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Sequence, Tuple

from .ipld import coerce_bytes

__all__ = [
    "Envelope",
    "EnvelopeKind",
    "INVOCATION_KEYS",
    "UcanFields",
    "classify",
    "is_invocation",
    "is_ucan",
]

INVOCATION_KEYS: Tuple[str, ...] = ("invocation", "task", "capabilities")


class EnvelopeKind(enum.Enum):
    UCAN = "ucan"
    INVOCATION = "invocation"
    NEITHER = "neither"


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def is_ucan(value: Any) -> bool:
    """Return ``True`` for a mapping with binary ``iss``/``aud`` and a sequence ``att``.

    The check is deliberately loose so tokens nested in unknown wrappers are
    still found; unrelated records with the same shape will match too.
    """

    if not isinstance(value, Mapping):
        return False
    return (
        coerce_bytes(value.get("iss")) is not None
        and coerce_bytes(value.get("aud")) is not None
        and _is_sequence(value.get("att"))
    )


def is_invocation(value: Any) -> bool:
    if not isinstance(value, Mapping):
        return False
    return any(key in value for key in INVOCATION_KEYS)


@dataclass(frozen=True)
class UcanFields:
    """Typed view over the fields of a UCAN envelope."""

    iss: bytes
    aud: bytes
    att: Sequence[Any]
    exp: Optional[Any] = None
    nbf: Optional[Any] = None
    prf: Sequence[Any] = ()
    s: Optional[bytes] = None
    v: Optional[str] = None

    @classmethod
    def from_mapping(cls, value: Mapping[str, Any]) -> "UcanFields":
        proofs = value.get("prf")
        version = value.get("v")
        return cls(
            iss=coerce_bytes(value["iss"]) or b"",
            aud=coerce_bytes(value["aud"]) or b"",
            att=tuple(value["att"]),
            exp=value.get("exp"),
            nbf=value.get("nbf"),
            prf=tuple(proofs) if _is_sequence(proofs) else (),
            s=coerce_bytes(value.get("s")),
            v=version if isinstance(version, str) else None,
        )

    @property
    def inherits_expiration(self) -> bool:
        return self.exp is None


@dataclass(frozen=True)
class Envelope:
    kind: EnvelopeKind
    value: Any
    ucan: Optional[UcanFields] = None

    @property
    def is_ucan(self) -> bool:
        return self.kind is EnvelopeKind.UCAN

    @property
    def is_invocation(self) -> bool:
        return self.kind is EnvelopeKind.INVOCATION


def classify(value: Any) -> Envelope:
    """Classify ``value``; a UCAN match wins over an invocation match."""

    if is_ucan(value):
        return Envelope(EnvelopeKind.UCAN, value, UcanFields.from_mapping(value))
    if is_invocation(value):
        return Envelope(EnvelopeKind.INVOCATION, value)
    return Envelope(EnvelopeKind.NEITHER, value)
