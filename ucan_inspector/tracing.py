"""Call-scoped logging for decode operations."""
from __future__ import annotations

import logging
import uuid
from typing import Any, MutableMapping, Optional, Tuple, Union

__all__ = ["DecodeLogAdapter", "LoggerLike", "bind_decode_logger"]

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]

_DEFAULT_LOGGER = logging.getLogger("ucan_inspector.decoder")


class DecodeLogAdapter(logging.LoggerAdapter):
    """Prefix every record with the id of the decode call that emitted it."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return f"[decode {extra.get('decode_id', '?')}] {msg}", kwargs

    @property
    def decode_id(self) -> str:
        return str((self.extra or {}).get("decode_id", ""))


def bind_decode_logger(
    logger: Optional[LoggerLike] = None, decode_id: Optional[str] = None
) -> DecodeLogAdapter:
    """Return an adapter bound to a fresh decode id.

    An adapter passed in keeps its id so nested decodes (multipart parts) log
    under the id of the outer call.
    """

    if isinstance(logger, DecodeLogAdapter) and decode_id is None:
        return logger

    base: logging.Logger
    if isinstance(logger, logging.LoggerAdapter):
        base = logger.logger
    elif logger is not None:
        base = logger
    else:
        base = _DEFAULT_LOGGER

    return DecodeLogAdapter(base, {"decode_id": decode_id or uuid.uuid4().hex[:12]})
