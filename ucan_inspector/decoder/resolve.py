"""Expand CID references inside UCAN envelopes using a block store."""
from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, NamedTuple, Optional, Tuple

from multiformats import CID

from ..config import DEFAULT_MAX_DEPTH, DEFAULT_MAX_NODES
from ..tracing import LoggerLike, bind_decode_logger
from .blocks import BlockStore, decode_block
from .envelope import classify
from .errors import ProofCycleError, ProofGraphError
from .ipld import canonical_cid, coerce_bytes

__all__ = ["ProofResolver", "resolve_proofs"]


class _Subtree(NamedTuple):
    value: Any
    # Levels below the subtree root and number of values once fully expanded.
    height: int
    size: int


_LEAF_HEIGHT = 0
_LEAF_SIZE = 1


class ProofResolver:
    """Replace every resolvable CID with its decoded, recursively resolved block.

    References missing from the store, or whose block is not CBOR, are kept
    as CIDs. A CID met again on its own resolution path raises
    :class:`ProofCycleError`. Nesting past ``max_depth``, or an expanded tree
    holding more than ``max_nodes`` values, raises :class:`ProofGraphError`.

    Each block is decoded and resolved once per resolver; later references
    to it share the resolved value.
    """

    def __init__(
        self,
        store: Optional[BlockStore],
        *,
        max_depth: int = DEFAULT_MAX_DEPTH,
        max_nodes: int = DEFAULT_MAX_NODES,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self._store = store
        self._max_depth = max_depth
        self._max_nodes = max_nodes
        self._logger = bind_decode_logger(logger)
        self._resolved: Dict[str, _Subtree] = {}

    def resolve(self, value: Any) -> Any:
        return self._resolve(value, 0, ()).value

    def _too_deep(self) -> ProofGraphError:
        return ProofGraphError(f"Proof graph exceeds the maximum depth of {self._max_depth} levels.")

    def _resolve(self, value: Any, depth: int, chain: Tuple[str, ...]) -> _Subtree:
        if depth > self._max_depth:
            raise self._too_deep()

        if isinstance(value, CID):
            return self._resolve_reference(value, depth, chain)
        if coerce_bytes(value) is not None:
            return _Subtree(value, _LEAF_HEIGHT, _LEAF_SIZE)
        if isinstance(value, Mapping):
            entries = [(key, self._resolve(item, depth + 1, chain)) for key, item in value.items()]
            return self._combine(
                {key: child.value for key, child in entries}, [child for _, child in entries]
            )
        if isinstance(value, (list, tuple)):
            children = [self._resolve(item, depth + 1, chain) for item in value]
            return self._combine([child.value for child in children], children)
        return _Subtree(value, _LEAF_HEIGHT, _LEAF_SIZE)

    def _combine(self, value: Any, children: Iterable[_Subtree]) -> _Subtree:
        height = _LEAF_HEIGHT
        size = _LEAF_SIZE
        for child in children:
            height = max(height, child.height + 1)
            size += child.size
        if size > self._max_nodes:
            raise ProofGraphError(
                f"Proof graph expands to more than {self._max_nodes} values."
            )
        return _Subtree(value, height, size)

    def _resolve_reference(self, cid: CID, depth: int, chain: Tuple[str, ...]) -> _Subtree:
        unresolved = _Subtree(cid, _LEAF_HEIGHT, _LEAF_SIZE)
        if self._store is None:
            return unresolved

        key = canonical_cid(cid)
        block = self._store.get(key)
        if block is None:
            self._logger.debug("Reference %s is not in the block store; leaving it unresolved.", key)
            return unresolved
        if key in chain:
            raise ProofCycleError(key, chain)

        resolved = self._resolved.get(key)
        if resolved is not None:
            if depth + resolved.height > self._max_depth:
                raise self._too_deep()
            return resolved

        try:
            decoded = decode_block(block)
        except (ValueError, EOFError) as exc:
            self._logger.debug("Block %s is not CBOR (%s); leaving it unresolved.", key, exc)
            return unresolved

        envelope = classify(decoded)
        if envelope.is_ucan:
            self._logger.debug(
                "Resolved %s to a UCAN with %d proof(s).", key, len(envelope.ucan.prf)
            )
        child = self._resolve(decoded, depth + 1, chain + (key,))
        # Height counts the reference level itself.
        resolved = _Subtree(child.value, child.height + 1, child.size)
        self._resolved[key] = resolved
        return resolved


def resolve_proofs(
    value: Any,
    store: Optional[BlockStore],
    *,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_nodes: int = DEFAULT_MAX_NODES,
    logger: Optional[LoggerLike] = None,
) -> Any:
    resolver = ProofResolver(store, max_depth=max_depth, max_nodes=max_nodes, logger=logger)
    return resolver.resolve(value)
