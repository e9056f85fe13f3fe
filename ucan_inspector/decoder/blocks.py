"""CAR archive parsing and the in-memory block store built from it."""
from __future__ import annotations

import struct
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from multiformats import CID, varint

from ..tracing import LoggerLike
from .errors import CarFormatError
from .ipld import canonical_cid, decode_cbor

__all__ = ["Block", "BlockStore", "CARV2_PRAGMA", "decode_block", "read_car"]

# varint(10) followed by the CBOR map {"version": 2}.
CARV2_PRAGMA = bytes.fromhex("0aa16776657273696f6e02")
_CARV2_HEADER = struct.Struct("<16sQQQ")
_CIDV0_PREFIX = b"\x12\x20"
_CIDV0_LENGTH = 34


@dataclass(frozen=True)
class Block:
    cid: CID
    data: bytes

    @property
    def key(self) -> str:
        return canonical_cid(self.cid)


def _read_varint(view: memoryview, offset: int) -> Tuple[int, int]:
    try:
        value, length, _ = varint.decode_raw(view[offset:])
    except (ValueError, IndexError) as exc:
        raise CarFormatError(f"Invalid varint at offset {offset}.", offset) from exc
    return value, offset + length


def _cid_length(section: memoryview, offset: int) -> int:
    if bytes(section[:2]) == _CIDV0_PREFIX:
        return _CIDV0_LENGTH

    version, cursor = _read_varint(section, 0)
    if version != 1:
        raise CarFormatError(f"Unsupported CID version {version}.", offset)
    _, cursor = _read_varint(section, cursor)  # codec
    _, cursor = _read_varint(section, cursor)  # multihash function
    digest_length, cursor = _read_varint(section, cursor)
    return cursor + digest_length


def _read_header(view: memoryview) -> Tuple[List[CID], int]:
    header_length, offset = _read_varint(view, 0)
    end = offset + header_length
    if header_length == 0 or end > len(view):
        raise CarFormatError("Truncated CAR header.", offset)

    try:
        header = decode_cbor(bytes(view[offset:end]))
    except Exception as exc:  # pylint: disable=broad-except
        raise CarFormatError(f"CAR header is not valid CBOR: {exc}", offset) from exc

    if not isinstance(header, Mapping):
        raise CarFormatError("CAR header must be a CBOR map.", offset)
    version = header.get("version")
    if version != 1:
        raise CarFormatError(f"Unsupported CAR version: {version!r}.", offset)
    roots = header.get("roots")
    if not isinstance(roots, (list, tuple)) or not all(isinstance(root, CID) for root in roots):
        raise CarFormatError("CAR header roots must be a list of CIDs.", offset)
    return list(roots), end


def _iter_sections(view: memoryview, offset: int) -> Iterator[Block]:
    while offset < len(view):
        section_length, start = _read_varint(view, offset)
        end = start + section_length
        if section_length == 0:
            raise CarFormatError("Empty CAR block section.", offset)
        if end > len(view):
            raise CarFormatError("Truncated CAR block section.", offset)

        section = view[start:end]
        cid_length = _cid_length(section, start)
        if cid_length > len(section):
            raise CarFormatError("Truncated CID in CAR block section.", start)
        try:
            cid = CID.decode(bytes(section[:cid_length]))
        except Exception as exc:  # pylint: disable=broad-except
            raise CarFormatError(f"Invalid CID in CAR block section: {exc}", start) from exc

        yield Block(cid=cid, data=bytes(section[cid_length:]))
        offset = end


def _unwrap_carv2(data: bytes) -> bytes:
    header_end = len(CARV2_PRAGMA) + _CARV2_HEADER.size
    if len(data) < header_end:
        raise CarFormatError("Truncated CARv2 header.", len(CARV2_PRAGMA))
    _, data_offset, data_size, _ = _CARV2_HEADER.unpack_from(data, len(CARV2_PRAGMA))
    if data_offset < header_end or data_offset + data_size > len(data):
        raise CarFormatError("CARv2 data payload lies outside the archive.", len(CARV2_PRAGMA))
    return data[data_offset : data_offset + data_size]


def read_car(data: Union[bytes, bytearray, memoryview]) -> Tuple[List[CID], List[Block]]:
    """Parse ``data`` as a CARv1 archive, unwrapping CARv2 when present."""

    payload = bytes(data)
    if payload.startswith(CARV2_PRAGMA):
        payload = _unwrap_carv2(payload)

    view = memoryview(payload)
    roots, offset = _read_header(view)
    return roots, list(_iter_sections(view, offset))


def decode_block(block: Block) -> Any:
    return decode_cbor(block.data)


class BlockStore:
    """Read-only index of the blocks of one archive, keyed by canonical CID."""

    def __init__(self, roots: Sequence[CID] = (), blocks: Iterable[Block] = ()) -> None:
        self._roots: Tuple[CID, ...] = tuple(roots)
        self._blocks: Tuple[Block, ...] = tuple(blocks)
        index = {}
        for block in self._blocks:
            index.setdefault(block.key, block)
        self._index: Mapping[str, Block] = MappingProxyType(index)

    @classmethod
    def from_car(
        cls, data: Union[bytes, bytearray, memoryview], logger: Optional[LoggerLike] = None
    ) -> "BlockStore":
        roots, blocks = read_car(data)
        store = cls(roots, blocks)
        if logger is not None:
            logger.debug(
                "Parsed CAR archive with %d block(s); roots: %s",
                len(store),
                ", ".join(canonical_cid(root) for root in roots) or "(none)",
            )
        return store

    @property
    def roots(self) -> Tuple[CID, ...]:
        return self._roots

    def blocks(self) -> Iterator[Block]:
        """Yield every block in file order, duplicates included."""
        return iter(self._blocks)

    def get(self, cid: Union[CID, str]) -> Optional[Block]:
        key = cid if isinstance(cid, str) else canonical_cid(cid)
        return self._index.get(key)

    def __contains__(self, cid: object) -> bool:
        if isinstance(cid, (CID, str)):
            return self.get(cid) is not None
        return False

    def __len__(self) -> int:
        return len(self._blocks)
