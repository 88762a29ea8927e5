"""WAL location codec.

PostgreSQL reports WAL positions as two hexadecimal 32-bit halves separated
by a slash, e.g. ``16/B374D848``.  The high half is the log id, the low half
the byte offset within it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from pgha_stats.errors import WalParseError

_UINT32_MAX = 0xFFFFFFFF
_HEX = re.compile(r"[0-9a-fA-F]+")


@dataclass(frozen=True, slots=True, order=True)
class WalPosition:
    """A parsed WAL location, ordered by (high, low)."""

    high: int
    low: int

    @property
    def lsn(self) -> int:
        """The position as a single 64-bit log sequence number."""
        return (self.high << 32) | self.low


def _parse_half(raw: str, part: str, name: str) -> int:
    if not part:
        raise WalParseError(raw, f"empty {name} component")
    if not _HEX.fullmatch(part):
        raise WalParseError(raw, f"non-hexadecimal {name} component {part!r}")
    value = int(part, 16)
    if value > _UINT32_MAX:
        raise WalParseError(raw, f"{name} component {part!r} overflows 32 bits")
    return value


def parse_wal_position(raw: str) -> WalPosition:
    """Parse an ``H/L`` WAL location string.

    Raises:
        WalParseError: if the separator is missing or repeated, a component is
            empty, not hexadecimal, or wider than 32 bits.
    """
    if not isinstance(raw, str):
        raise WalParseError(repr(raw), f"expected str, got {type(raw).__name__}")
    parts = raw.split("/")
    if len(parts) != 2:
        raise WalParseError(raw, "expected exactly one '/' separator")
    high = _parse_half(raw, parts[0], "high")
    low = _parse_half(raw, parts[1], "low")
    return WalPosition(high=high, low=low)


def format_wal_position(position: WalPosition, *, zero_pad: bool = False) -> str:
    """Render a position back to PostgreSQL's ``H/L`` notation."""
    if zero_pad:
        return f"{position.high:08X}/{position.low:08X}"
    return f"{position.high:X}/{position.low:X}"
