"""Parameters of an incremental distributed point function.

A hierarchy of L levels over a binary prefix tree:

- level h evaluates prefixes of ``log_domain_size`` bits;
- each level outputs elements of ``element_bitsize`` bits, with arithmetic
  modulo 2**element_bitsize.

The last level's ``log_domain_size`` is the depth of the tree and the bit
length of the secret index alpha.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Sequence

from dpf_histograms.errors import ParameterError

MAGIC = b"DPFP"
VERSION = 1
MAX_LOG_DOMAIN_SIZE = 64
VALID_ELEMENT_BITSIZES = (8, 16, 32, 64)

_HEADER = struct.Struct("<4sBB")  # magic, version, level count
_LEVEL = struct.Struct("<BB")  # log_domain_size, element_bitsize


@dataclass(frozen=True)
class LevelParameters:
    """Bit length of one hierarchy level and the width of its outputs."""

    log_domain_size: int
    element_bitsize: int = 64

    def __post_init__(self) -> None:
        if not (0 <= self.log_domain_size <= MAX_LOG_DOMAIN_SIZE):
            msg = f"log_domain_size must be in [0, {MAX_LOG_DOMAIN_SIZE}], got {self.log_domain_size}"
            raise ParameterError(msg)
        if self.element_bitsize not in VALID_ELEMENT_BITSIZES:
            msg = f"element_bitsize must be one of {VALID_ELEMENT_BITSIZES}, got {self.element_bitsize}"
            raise ParameterError(msg)

    @property
    def modulus(self) -> int:
        return 1 << self.element_bitsize

    @property
    def mask(self) -> int:
        return self.modulus - 1


@dataclass(frozen=True)
class Parameters:
    """Immutable schema shared by both helpers and both keys of a pair.

    Attributes
    ----------
        levels: tuple[LevelParameters, ...]
            One entry per hierarchy level, shallowest first.

    Raises
    ------
        ParameterError: If there are no levels, if the domain sizes are not
            strictly increasing, or if an element width shrinks from one
            level to the next.
    """

    levels: tuple[LevelParameters, ...]

    def __post_init__(self) -> None:
        levels = tuple(self.levels)
        object.__setattr__(self, "levels", levels)
        if not levels:
            raise ParameterError("Parameters need at least one level")
        for prev, cur in zip(levels, levels[1:]):
            if cur.log_domain_size <= prev.log_domain_size:
                msg = (
                    "log_domain_size must be strictly increasing, got "
                    f"{prev.log_domain_size} then {cur.log_domain_size}"
                )
                raise ParameterError(msg)
            if cur.element_bitsize < prev.element_bitsize:
                msg = (
                    "element_bitsize must not decrease between levels, got "
                    f"{prev.element_bitsize} then {cur.element_bitsize}"
                )
                raise ParameterError(msg)

    @classmethod
    def from_prefix_lengths(cls, prefix_lengths: Sequence[int], element_bitsize: int = 64) -> Parameters:
        """Build a schema whose levels match an expansion plan's prefix lengths."""
        return cls(tuple(LevelParameters(int(n), element_bitsize) for n in prefix_lengths))

    @property
    def num_levels(self) -> int:
        return len(self.levels)

    @property
    def tree_depth(self) -> int:
        """Bit length of the full domain (depth of the last level)."""
        return self.levels[-1].log_domain_size

    def log_domain_size(self, level: int) -> int:
        return self.levels[level].log_domain_size

    def element_bitsize(self, level: int) -> int:
        return self.levels[level].element_bitsize

    def level_at_depth(self) -> dict[int, int]:
        """Map tree depth -> hierarchy level for every depth that outputs values."""
        return {lp.log_domain_size: h for h, lp in enumerate(self.levels)}

    def to_bytes(self) -> bytes:
        out = bytearray(_HEADER.pack(MAGIC, VERSION, len(self.levels)))
        for lp in self.levels:
            out += _LEVEL.pack(lp.log_domain_size, lp.element_bitsize)
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> Parameters:
        """Parse the binary schema.

        Raises
        ------
            ParameterError: On bad magic, unknown version, wrong length or
                invalid level values.
        """
        data = bytes(data)
        if len(data) < _HEADER.size:
            raise ParameterError("fail to parse Parameters: buffer too small")
        magic, version, count = _HEADER.unpack_from(data, 0)
        if magic != MAGIC:
            raise ParameterError("fail to parse Parameters: bad magic")
        if version != VERSION:
            raise ParameterError(f"fail to parse Parameters: unsupported version {version}")
        if len(data) != _HEADER.size + count * _LEVEL.size:
            raise ParameterError("fail to parse Parameters: length mismatch")
        levels = []
        for i in range(count):
            log_domain, bitsize = _LEVEL.unpack_from(data, _HEADER.size + i * _LEVEL.size)
            levels.append(LevelParameters(log_domain, bitsize))
        return cls(tuple(levels))

    def __repr__(self) -> str:
        shape = ", ".join(f"{lp.log_domain_size}:{lp.element_bitsize}" for lp in self.levels)
        return f"Parameters(levels=[{shape}])"
