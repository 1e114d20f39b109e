"""Text-safe compression codec shared by the chunk store and the tiered cache.

Pipeline::

    value ──values.dumps──▶ bytes ──gzip──▶ bytes ──base64──▶ str
    str   ──base64──▶ bytes ──gunzip──▶ bytes ──values.loads──▶ value

The persistent backends only accept strings, so the compressed bytes are
base64-encoded. ``mtime=0`` keeps the output deterministic for equal input.
"""

from __future__ import annotations

import base64
import gzip
from dataclasses import dataclass
from typing import Any

from sheetspine.core import values


@dataclass(frozen=True)
class EncodedPayload:
    """Result of :func:`encode_value`."""

    text: str
    original_size: int
    item_count: int

    @property
    def encoded_size(self) -> int:
        return len(self.text)

    @property
    def ratio(self) -> float:
        """Encoded size as a fraction of the serialized size."""
        if self.original_size == 0:
            return 0.0
        return self.encoded_size / self.original_size


def compress_text(data: bytes, level: int = 6) -> str:
    """gzip + base64."""
    return base64.b64encode(gzip.compress(data, compresslevel=level, mtime=0)).decode("ascii")


def decompress_text(text: str) -> bytes:
    """Inverse of :func:`compress_text`. Raises on malformed input."""
    return gzip.decompress(base64.b64decode(text.encode("ascii"), validate=True))


def encode_value(value: Any, level: int = 6) -> EncodedPayload:
    """Serialize, compress and text-encode a value."""
    raw = values.dumps(value)
    return EncodedPayload(
        text=compress_text(raw, level=level),
        original_size=len(raw),
        item_count=values.item_count(value),
    )


def decode_value(text: str) -> Any:
    """Inverse of :func:`encode_value`."""
    return values.loads(decompress_text(text))
