"""
Length-doubling PRG used to walk the point-function tree.

Each 16-byte node seed keys AES-128 in ECB mode over four fixed plaintext
blocks:

- block 0 -> left child seed
- block 1 -> right child seed
- block 2 -> child control bits (byte 0 for left, byte 1 for right)
- block 3 -> value word of the node itself (first 8 bytes, little-endian)
"""

from dataclasses import dataclass

from Crypto.Cipher import AES

SEED_SIZE = 16

_PLAINTEXT = b"".join(bytes([k]) + bytes(15) for k in range(4))


@dataclass(frozen=True)
class NodeExpansion:
    """Everything derived from one node seed."""

    left_seed: bytes
    left_control: int
    right_seed: bytes
    right_control: int
    value_word: int


def expand(seed: bytes) -> NodeExpansion:
    """Expand a node seed into its two children and its value word."""
    if len(seed) != SEED_SIZE:
        raise ValueError(f"seed must be {SEED_SIZE} bytes, got {len(seed)}")
    out = AES.new(seed, AES.MODE_ECB).encrypt(_PLAINTEXT)
    return NodeExpansion(
        left_seed=out[0:16],
        left_control=out[32] & 1,
        right_seed=out[16:32],
        right_control=out[33] & 1,
        value_word=int.from_bytes(out[48:56], "little"),
    )


def xor_bytes(a: bytes, b: bytes) -> bytes:
    """XOR two byte strings of equal length."""
    if len(a) != len(b):
        raise ValueError(f"Length mismatch: {len(a)} vs {len(b)}")
    return bytes(x ^ y for x, y in zip(a, b))
