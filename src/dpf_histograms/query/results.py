"""PartialResult: one helper's per-prefix aggregate share for one level."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Sequence

import numpy as np
from numpy.typing import NDArray

from dpf_histograms.differential_privacy import center_lift, modulo_clip
from dpf_histograms.errors import ConfigError


def join_uri(base: str, *parts: str) -> str:
    """Join path components onto a base URI."""
    return "/".join([base.rstrip("/"), *(p.strip("/") for p in parts)])


def partial_result_uri(base_dir: str, query_id: str, level: int) -> str:
    """Location of a PartialResult; a pure function of its three inputs."""
    return join_uri(base_dir, query_id, f"level_{level}.json")


@dataclass(frozen=True)
class PartialResult:
    """Aggregate share of one helper at one level.

    ``values[i]`` is the share for ``prefixes[i]`` modulo
    ``2**element_bitsize``.
    """

    query_id: str
    level: int
    bit_length: int
    element_bitsize: int
    prefixes: tuple[int, ...]
    values: tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "prefixes", tuple(int(p) for p in self.prefixes))
        object.__setattr__(self, "values", tuple(int(v) for v in self.values))
        if len(self.prefixes) != len(self.values):
            msg = f"{len(self.prefixes)} prefixes but {len(self.values)} values"
            raise ConfigError(msg)

    def to_dict(self) -> dict[str, Any]:
        return {
            "query_id": self.query_id,
            "level": self.level,
            "bit_length": self.bit_length,
            "element_bitsize": self.element_bitsize,
            "prefixes": list(self.prefixes),
            "values": list(self.values),
        }

    def to_bytes(self) -> bytes:
        """Deterministic encoding: equal results give identical bytes."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":")).encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> PartialResult:
        try:
            d = json.loads(data)
            return cls(
                query_id=str(d["query_id"]),
                level=int(d["level"]),
                bit_length=int(d["bit_length"]),
                element_bitsize=int(d["element_bitsize"]),
                prefixes=tuple(d["prefixes"]),
                values=tuple(d["values"]),
            )
        except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"invalid partial result: {exc!r}") from exc

    def values_array(self) -> NDArray[np.uint64]:
        return np.array(self.values, dtype=np.uint64)


def combine_partial_results(first: PartialResult, second: PartialResult) -> dict[int, int]:
    """Reconstruct per-prefix counts from both helpers' shares.

    Raises
    ------
        ConfigError: If the two results do not describe the same prefixes.
    """
    if (first.query_id, first.level, first.bit_length, first.element_bitsize) != (
        second.query_id, second.level, second.bit_length, second.element_bitsize
    ):
        raise ConfigError("partial results belong to different queries or levels")
    if first.prefixes != second.prefixes:
        raise ConfigError(f"helpers evaluated different prefixes at level {first.level}")
    total = modulo_clip(first.values_array() + second.values_array(), 1 << first.element_bitsize)
    counts = center_lift(total, first.element_bitsize)
    return {p: int(c) for p, c in zip(first.prefixes, counts)}


def select_heavy_prefixes(counts: dict[int, int], threshold: float) -> list[int]:
    """Prefixes whose reconstructed count reaches ``threshold``, in order."""
    return sorted(p for p, c in counts.items() if c >= threshold)


def extend_prefixes(prefixes: Sequence[int], from_bits: int, to_bits: int) -> list[int]:
    """All descendants at ``to_bits`` of the given ``from_bits`` prefixes."""
    if to_bits < from_bits:
        raise ConfigError(f"cannot extend {from_bits}-bit prefixes to {to_bits} bits")
    shift = to_bits - from_bits
    return [(p << shift) | i for p in sorted(prefixes) for i in range(1 << shift)]
