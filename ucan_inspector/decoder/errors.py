"""Error types raised by the UCAN decoder."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

__all__ = [
    "CarFormatError",
    "DecodeError",
    "ProofCycleError",
    "ProofGraphError",
    "StrategyAttempt",
    "SUPPORTED_FORMATS_MESSAGE",
]

SUPPORTED_FORMATS_MESSAGE = (
    "Supported formats: CAR, CBOR or JSON (including DAG-JSON) payloads, either raw "
    "or wrapped in base64, base64url or hex text, and multipart bodies carrying them."
)


@dataclass(frozen=True)
class StrategyAttempt:
    """Why one format strategy did not produce any UCAN."""

    strategy: str
    encoding: str
    reason: str

    def describe(self) -> str:
        if self.encoding and self.encoding != self.strategy:
            return f"{self.strategy} ({self.encoding}): {self.reason}"
        return f"{self.strategy}: {self.reason}"


class DecodeError(ValueError):
    """Raised once every format strategy has been exhausted."""

    def __init__(self, message: str, attempts: Optional[Sequence[StrategyAttempt]] = None) -> None:
        self.attempts: Tuple[StrategyAttempt, ...] = tuple(attempts or ())
        detail = ""
        if self.attempts:
            detail = " Attempts: " + "; ".join(attempt.describe() for attempt in self.attempts) + "."
        super().__init__(message + detail)
        self.summary = message


class CarFormatError(ValueError):
    """Raised when bytes cannot be parsed as a CAR archive."""

    def __init__(self, message: str, offset: int = 0) -> None:
        super().__init__(message)
        self.offset = offset


class ProofGraphError(ValueError):
    """Raised when a proof graph is nested deeper than the configured limit."""


class ProofCycleError(ProofGraphError):
    """Raised when a CID is reached again while it is still being resolved."""

    def __init__(self, cid: str, chain: Sequence[str]) -> None:
        path = " -> ".join(list(chain) + [cid])
        super().__init__(f"Cyclic proof graph detected: {path}")
        self.cid = cid
        self.chain = tuple(chain)
