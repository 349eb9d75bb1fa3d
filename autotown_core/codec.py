"""Gzip payload codec shared by the raw usage store and the rollup queue."""

from __future__ import annotations

import gzip
import zlib

from autotown_core.errors import CorruptPayload


def compress(data: bytes) -> bytes:
    # mtime=0 keeps the output a pure function of the input
    return gzip.compress(bytes(data), mtime=0)


def decompress(data: bytes) -> bytes:
    # gzip accepts an empty stream; a stored payload never is one
    if not data:
        raise CorruptPayload("Invalid gzip payload: empty input")
    try:
        return gzip.decompress(bytes(data))
    except (OSError, EOFError, zlib.error) as exc:
        raise CorruptPayload(f"Invalid gzip payload: {exc}") from exc
