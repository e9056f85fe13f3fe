"""Depth-first discovery of UCAN and invocation envelopes in decoded values."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Set, Tuple

from multiformats import CID

from ..config import DEFAULT_MAX_DEPTH
from ..tracing import LoggerLike, bind_decode_logger
from .blocks import BlockStore, decode_block
from .envelope import EnvelopeKind, classify
from .errors import ProofCycleError, ProofGraphError
from .ipld import canonical_cid, coerce_bytes

__all__ = ["Extraction", "extract_envelopes"]


@dataclass
class Extraction:
    ucans: List[Any] = field(default_factory=list)
    invocations: List[Any] = field(default_factory=list)

    def extend(self, other: "Extraction") -> None:
        self.ucans.extend(other.ucans)
        self.invocations.extend(other.invocations)


# (value, depth, CIDs on the path from the root to value)
_WorkItem = Tuple[Any, int, Tuple[str, ...]]


def extract_envelopes(
    value: Any,
    store: Optional[BlockStore] = None,
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    logger: Optional[LoggerLike] = None,
) -> Extraction:
    """Collect every UCAN and invocation envelope reachable from ``value``.

    UCANs are collected without descending into them. Invocations are
    collected and still searched for nested UCANs. CIDs are followed only when
    ``store`` holds the referenced block, and each block is expanded at most
    once. Results are in depth-first pre-order.
    """

    log = bind_decode_logger(logger)
    found = Extraction()
    stack: List[_WorkItem] = [(value, 0, ())]
    expanded: Set[str] = set()

    while stack:
        current, depth, chain = stack.pop()
        if depth > max_depth:
            raise ProofGraphError(f"Payload nesting exceeds the maximum depth of {max_depth} levels.")

        if isinstance(current, CID):
            if store is None:
                continue
            key = canonical_cid(current)
            block = store.get(key)
            if block is None:
                continue
            if key in chain:
                raise ProofCycleError(key, chain)
            if key in expanded:
                continue
            expanded.add(key)
            try:
                decoded = decode_block(block)
            except (ValueError, EOFError) as exc:
                log.debug("Skipping block %s during extraction: %s", key, exc)
                continue
            stack.append((decoded, depth + 1, chain + (key,)))
            continue

        envelope = classify(current)
        if envelope.kind is EnvelopeKind.UCAN:
            found.ucans.append(current)
            continue
        if envelope.kind is EnvelopeKind.INVOCATION:
            found.invocations.append(current)

        if coerce_bytes(current) is not None:
            continue
        if isinstance(current, Mapping):
            children = list(current.values())
        elif isinstance(current, (list, tuple)):
            children = list(current)
        else:
            continue
        for child in reversed(children):
            stack.append((child, depth + 1, chain))

    log.debug(
        "Extraction found %d UCAN(s) and %d invocation(s).",
        len(found.ucans),
        len(found.invocations),
    )
    return found
