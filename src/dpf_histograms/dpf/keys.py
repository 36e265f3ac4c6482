"""Key generation for the incremental distributed point function.

The construction is the tree-based two-party DPF: both keys start from
independent random root seeds with opposite control bits. At every tree
depth a correction word keeps the two parties' seeds equal (and control
bits equal) off the path to alpha, and different on it. At every depth
that ends a hierarchy level a value correction turns the on-path
difference into beta.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Sequence, Union

from Crypto.Random import get_random_bytes

from dpf_histograms.dpf.params import Parameters
from dpf_histograms.dpf.prg import SEED_SIZE, expand, xor_bytes
from dpf_histograms.errors import InputError, ParameterError

MAGIC = b"DPFK"
VERSION = 1

_HEADER = struct.Struct("<4sBBBB")  # magic, version, party, tree depth, level count
_CORRECTION = struct.Struct(f"<{SEED_SIZE}sB")
_VALUE = struct.Struct("<Q")

Beta = Union[int, Sequence[int]]


@dataclass(frozen=True)
class CorrectionWord:
    """Per-depth correction applied when the parent control bit is set."""

    seed: bytes
    control_left: int
    control_right: int


@dataclass(frozen=True)
class KeyShare:
    """One half of a key pair.

    Neither share alone reveals alpha or beta: the root seed is uniformly
    random and every correction word is masked by the partner's seeds.
    """

    party: int
    seed: bytes
    correction_words: tuple[CorrectionWord, ...]
    value_corrections: tuple[int, ...]

    def to_bytes(self) -> bytes:
        out = bytearray(
            _HEADER.pack(MAGIC, VERSION, self.party, len(self.correction_words), len(self.value_corrections))
        )
        out += self.seed
        for cw in self.correction_words:
            out += _CORRECTION.pack(cw.seed, (cw.control_left & 1) | ((cw.control_right & 1) << 1))
        for vcw in self.value_corrections:
            out += _VALUE.pack(vcw)
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes, parameters: Parameters) -> KeyShare:
        """Parse a serialized share and check it against ``parameters``.

        Raises
        ------
            ParameterError: If the payload is corrupt or its shape does not
                match the tree depth and level count of ``parameters``.
        """
        data = bytes(data)
        if len(data) < _HEADER.size + SEED_SIZE:
            raise ParameterError("fail to parse KeyShare: buffer too small")
        magic, version, party, depth, num_levels = _HEADER.unpack_from(data, 0)
        if magic != MAGIC:
            raise ParameterError("fail to parse KeyShare: bad magic")
        if version != VERSION:
            raise ParameterError(f"fail to parse KeyShare: unsupported version {version}")
        if party not in (0, 1):
            raise ParameterError(f"fail to parse KeyShare: party must be 0 or 1, got {party}")
        if depth != parameters.tree_depth or num_levels != parameters.num_levels:
            msg = (
                f"KeyShare shape (depth={depth}, levels={num_levels}) does not match "
                f"{parameters!r}"
            )
            raise ParameterError(msg)
        expected = _HEADER.size + SEED_SIZE + depth * _CORRECTION.size + num_levels * _VALUE.size
        if len(data) != expected:
            raise ParameterError("fail to parse KeyShare: length mismatch")

        off = _HEADER.size
        seed = data[off : off + SEED_SIZE]
        off += SEED_SIZE
        cws = []
        for _ in range(depth):
            cw_seed, bits = _CORRECTION.unpack_from(data, off)
            off += _CORRECTION.size
            if bits & ~0x03:
                raise ParameterError("fail to parse KeyShare: control bits out of range")
            cws.append(CorrectionWord(cw_seed, bits & 1, (bits >> 1) & 1))
        vcws = []
        for h in range(num_levels):
            (vcw,) = _VALUE.unpack_from(data, off)
            off += _VALUE.size
            if vcw >> parameters.element_bitsize(h):
                raise ParameterError("fail to parse KeyShare: value correction exceeds element width")
            vcws.append(vcw)
        return cls(party, seed, tuple(cws), tuple(vcws))


def _normalize_beta(parameters: Parameters, beta: Beta) -> list[int]:
    if isinstance(beta, int):
        betas = [beta] * parameters.num_levels
    else:
        betas = [int(b) for b in beta]
        if len(betas) != parameters.num_levels:
            msg = f"expected one beta per level ({parameters.num_levels}), got {len(betas)}"
            raise InputError(msg)
    for h, b in enumerate(betas):
        if not (0 <= b < (1 << parameters.element_bitsize(h))):
            msg = f"beta {b} does not fit level {h} element width {parameters.element_bitsize(h)}"
            raise InputError(msg)
    return betas


def _value_correction(beta: int, value_0: int, value_1: int, control_1: int, bitsize: int) -> int:
    mask = (1 << bitsize) - 1
    vcw = (beta - (value_0 & mask) + (value_1 & mask)) & mask
    if control_1:
        vcw = (-vcw) & mask
    return vcw


def generate_keys(parameters: Parameters, alpha: int, beta: Beta) -> tuple[KeyShare, KeyShare]:
    """Generate a fresh key pair for the point function alpha -> beta.

    Args:
        parameters: Schema shared by both helpers.
        alpha: Secret index, ``0 <= alpha < 2**parameters.tree_depth``.
        beta: Secret value, either one int used at every level or one value
            per level.

    Returns:
        (KeyA, KeyB). Evaluated at the same prefix and summed modulo the
        level's element width they give beta on alpha's prefix and zero
        elsewhere.

    Raises:
        ParameterError: If ``parameters`` is not a valid schema.
        InputError: If alpha or beta do not fit the schema.
    """
    if not isinstance(parameters, Parameters):
        raise ParameterError(f"expected Parameters, got {type(parameters).__name__}")
    depth = parameters.tree_depth
    if not (0 <= alpha < (1 << depth)):
        raise InputError(f"alpha {alpha} outside the {depth}-bit domain")
    betas = _normalize_beta(parameters, beta)
    level_at_depth = parameters.level_at_depth()

    root_seeds = (get_random_bytes(SEED_SIZE), get_random_bytes(SEED_SIZE))
    seeds = list(root_seeds)
    controls = [0, 1]
    correction_words: list[CorrectionWord] = []
    value_corrections = [0] * parameters.num_levels

    for d in range(depth + 1):
        e0, e1 = expand(seeds[0]), expand(seeds[1])
        h = level_at_depth.get(d)
        if h is not None:
            value_corrections[h] = _value_correction(
                betas[h], e0.value_word, e1.value_word, controls[1], parameters.element_bitsize(h)
            )
        if d == depth:
            break

        bit = (alpha >> (depth - 1 - d)) & 1
        if bit:
            seed_cw = xor_bytes(e0.left_seed, e1.left_seed)
        else:
            seed_cw = xor_bytes(e0.right_seed, e1.right_seed)
        cw = CorrectionWord(
            seed=seed_cw,
            control_left=e0.left_control ^ e1.left_control ^ bit ^ 1,
            control_right=e0.right_control ^ e1.right_control ^ bit,
        )
        correction_words.append(cw)

        for b, e in enumerate((e0, e1)):
            if bit:
                child_seed, child_control, cw_control = e.right_seed, e.right_control, cw.control_right
            else:
                child_seed, child_control, cw_control = e.left_seed, e.left_control, cw.control_left
            if controls[b]:
                child_seed = xor_bytes(child_seed, cw.seed)
                child_control ^= cw_control
            seeds[b] = child_seed
            controls[b] = child_control

    cws = tuple(correction_words)
    vcws = tuple(value_corrections)
    return (
        KeyShare(0, root_seeds[0], cws, vcws),
        KeyShare(1, root_seeds[1], cws, vcws),
    )
