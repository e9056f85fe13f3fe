"""Configuration for the UCAN payload decoder."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

__all__ = [
    "DEFAULT_MAX_DEPTH",
    "DEFAULT_MAX_NODES",
    "DEFAULT_MIN_HEX_LENGTH",
    "DEFAULT_SEPARATOR",
    "DecoderSettings",
    "load_settings",
]

DEFAULT_MAX_DEPTH = 128
# Upper bound on the values a resolved proof tree may expand to.
DEFAULT_MAX_NODES = 100_000
# Hex text must be longer than this; short ASCII words are valid hex.
DEFAULT_MIN_HEX_LENGTH = 50
DEFAULT_SEPARATOR = ":"

_ENV_PREFIX = "UCAN_INSPECTOR_"


def _env_flag(name: str, environ: Mapping[str, str]) -> Optional[bool]:
    """Return ``True`` or ``False`` when the named env var is explicitly set."""

    raw_value = environ.get(name)
    if raw_value is None:
        return None

    normalised = raw_value.strip().lower()
    if normalised in {"", "0", "false", "off", "no"}:
        return False
    return True


def _env_int(name: str, environ: Mapping[str, str], *, minimum: int = 0) -> Optional[int]:
    """Return a non-negative integer from the environment or ``None`` when unusable."""

    raw_value = environ.get(name)
    if raw_value is None:
        return None

    try:
        value = int(raw_value.strip(), 10)
    except ValueError:
        return None
    if value < minimum:
        return None
    return value


@dataclass(frozen=True)
class DecoderSettings:
    """Tunables for a single decode call."""

    max_depth: int = DEFAULT_MAX_DEPTH
    max_nodes: int = DEFAULT_MAX_NODES
    min_hex_length: int = DEFAULT_MIN_HEX_LENGTH
    separator: str = DEFAULT_SEPARATOR
    resolve_proofs: bool = True

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "DecoderSettings":
        """Build settings from ``UCAN_INSPECTOR_*`` environment variables.

        Values that cannot be parsed are ignored and the default is kept.
        """

        env = os.environ if environ is None else environ
        settings = cls()

        max_depth = _env_int(f"{_ENV_PREFIX}MAX_DEPTH", env, minimum=1)
        max_nodes = _env_int(f"{_ENV_PREFIX}MAX_NODES", env, minimum=1)
        min_hex_length = _env_int(f"{_ENV_PREFIX}MIN_HEX_LENGTH", env, minimum=2)
        resolve_proofs = _env_flag(f"{_ENV_PREFIX}RESOLVE_PROOFS", env)
        separator = env.get(f"{_ENV_PREFIX}SEPARATOR")

        return cls(
            max_depth=max_depth if max_depth is not None else settings.max_depth,
            max_nodes=max_nodes if max_nodes is not None else settings.max_nodes,
            min_hex_length=(
                min_hex_length if min_hex_length is not None else settings.min_hex_length
            ),
            # An empty separator disables stripping; longer values are ignored.
            separator=separator if separator is not None and len(separator) <= 1 else settings.separator,
            resolve_proofs=resolve_proofs if resolve_proofs is not None else settings.resolve_proofs,
        )


def load_settings() -> DecoderSettings:
    return DecoderSettings.from_env()
