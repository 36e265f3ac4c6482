"""Bundles of opaque blobs: partial reports (key shares) and contexts."""

from __future__ import annotations

import struct
from typing import Iterable

from dpf_histograms.errors import ParameterError

MAGIC = b"DPFB"
VERSION = 1

_HEADER = struct.Struct("<4sBI")  # magic, version, count
_LEN = struct.Struct("<I")


def pack_blobs(blobs: Iterable[bytes]) -> bytes:
    """Length-prefix and concatenate ``blobs``."""
    items = [bytes(b) for b in blobs]
    out = bytearray(_HEADER.pack(MAGIC, VERSION, len(items)))
    for blob in items:
        out += _LEN.pack(len(blob))
        out += blob
    return bytes(out)


def unpack_blobs(data: bytes) -> list[bytes]:
    """Inverse of ``pack_blobs``.

    Raises
    ------
        ParameterError: If the bundle is truncated or corrupt.
    """
    data = bytes(data)
    try:
        magic, version, count = _HEADER.unpack_from(data, 0)
        if magic != MAGIC:
            raise ParameterError("fail to parse blob bundle: bad magic")
        if version != VERSION:
            raise ParameterError(f"fail to parse blob bundle: unsupported version {version}")
        off = _HEADER.size
        blobs = []
        for _ in range(count):
            (n,) = _LEN.unpack_from(data, off)
            off += _LEN.size
            if off + n > len(data):
                raise ParameterError("fail to parse blob bundle: truncated blob")
            blobs.append(data[off : off + n])
            off += n
    except struct.error as exc:
        raise ParameterError(f"fail to parse blob bundle: {exc}") from exc
    if off != len(data):
        raise ParameterError("fail to parse blob bundle: trailing bytes")
    return blobs
