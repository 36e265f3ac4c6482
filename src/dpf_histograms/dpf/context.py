"""Level-by-level evaluation of one key share.

An ``EvaluationContext`` is a value: ``evaluate_level`` never mutates the
context it is given and returns a new context advanced by exactly one
level. The returned context only carries the node seeds of the prefixes
evaluated at that level, so it can never go back to a finished level.

The caller must discard the old value once it holds the returned one and
keep the new context as its only copy. The old value is still a valid
context for the earlier level; the level orchestrator relies on this when
it recomputes a redelivered level from the stored previous-level contexts.
"""

from __future__ import annotations

import logging
import operator
import struct
from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional, Union

import numpy as np
from numpy.typing import NDArray

from dpf_histograms.dpf.keys import KeyShare
from dpf_histograms.dpf.params import Parameters
from dpf_histograms.dpf.prg import SEED_SIZE, expand, xor_bytes
from dpf_histograms.errors import InputError, InternalError, ParameterError, StateError

logger = logging.getLogger(__name__)

MAGIC = b"DPFC"
VERSION = 1
# Full-domain evaluation (prefixes=None) is refused above this many bits.
MAX_FULL_EXPANSION_BITS = 24

_HEADER = struct.Struct("<4sBBI")  # magic, version, next level, frontier size
_BLOB_LEN = struct.Struct("<I")
_NODE = struct.Struct(f"<Q{SEED_SIZE}sB")


@dataclass(frozen=True)
class NodeState:
    """Seed and control bit of one tree node."""

    seed: bytes
    control: int


@dataclass(frozen=True)
class EvaluationContext:
    """Key share plus the expansion progress of one helper for one record.

    Attributes
    ----------
        parameters: Parameters
            Schema the key was generated against.
        key: KeyShare
            The share being evaluated.
        next_level: int
            Hierarchy level the next ``evaluate_level`` call will produce.
        frontier: Mapping[int, NodeState]
            Node states of the prefixes evaluated at ``next_level - 1``.
    """

    parameters: Parameters
    key: KeyShare
    next_level: int = 0
    frontier: Mapping[int, NodeState] = field(default_factory=dict)

    @property
    def exhausted(self) -> bool:
        return self.next_level >= self.parameters.num_levels

    def to_bytes(self) -> bytes:
        """Encode as a versioned, self-describing blob."""
        params_blob = self.parameters.to_bytes()
        key_blob = self.key.to_bytes()
        out = bytearray(_HEADER.pack(MAGIC, VERSION, self.next_level, len(self.frontier)))
        out += _BLOB_LEN.pack(len(params_blob)) + params_blob
        out += _BLOB_LEN.pack(len(key_blob)) + key_blob
        try:
            for prefix in sorted(self.frontier):
                node = self.frontier[prefix]
                out += _NODE.pack(prefix, node.seed, node.control)
        except struct.error as exc:
            raise InternalError(f"fail to copy EvaluationContext: {exc}") from exc
        return bytes(out)

    @classmethod
    def from_bytes(cls, data: bytes) -> EvaluationContext:
        """Rebuild a context; subsequent evaluations match the original.

        Raises
        ------
            ParameterError: If the blob is corrupt or internally inconsistent.
        """
        data = bytes(data)
        try:
            magic, version, next_level, count = _HEADER.unpack_from(data, 0)
            if magic != MAGIC:
                raise ParameterError("fail to parse EvaluationContext: bad magic")
            if version != VERSION:
                raise ParameterError(f"fail to parse EvaluationContext: unsupported version {version}")
            off = _HEADER.size
            (n,) = _BLOB_LEN.unpack_from(data, off)
            off += _BLOB_LEN.size
            parameters = Parameters.from_bytes(data[off : off + n])
            off += n
            (n,) = _BLOB_LEN.unpack_from(data, off)
            off += _BLOB_LEN.size
            key = KeyShare.from_bytes(data[off : off + n], parameters)
            off += n
            frontier = {}
            for _ in range(count):
                prefix, seed, control = _NODE.unpack_from(data, off)
                off += _NODE.size
                frontier[prefix] = NodeState(seed, control & 1)
        except struct.error as exc:
            raise ParameterError(f"fail to parse EvaluationContext: {exc}") from exc
        if off != len(data):
            raise ParameterError("fail to parse EvaluationContext: trailing bytes")
        if next_level > parameters.num_levels:
            raise ParameterError("fail to parse EvaluationContext: level beyond parameters")
        return cls(parameters, key, next_level, frontier)


def create_evaluation_context(
    parameters: Union[Parameters, bytes],
    key_share: Union[KeyShare, bytes],
) -> EvaluationContext:
    """Create the context a helper keeps for one key over a whole query.

    Both arguments may be given either decoded or in their wire format.

    Raises:
        ParameterError: If either cannot be decoded or the share's shape does
            not match the parameters.
    """
    if isinstance(parameters, (bytes, bytearray)):
        parameters = Parameters.from_bytes(parameters)
    if isinstance(key_share, (bytes, bytearray)):
        key_share = KeyShare.from_bytes(key_share, parameters)
    elif (
        len(key_share.correction_words) != parameters.tree_depth
        or len(key_share.value_corrections) != parameters.num_levels
    ):
        raise ParameterError(f"KeyShare shape does not match {parameters!r}")
    return EvaluationContext(parameters, key_share)


def _validate_prefixes(prefixes: Iterable[int], bits: int, level: int) -> list[int]:
    result = []
    seen = set()
    limit = 1 << bits
    for raw in prefixes:
        try:
            p = operator.index(raw)
        except TypeError as exc:
            raise InputError(f"prefix {raw!r} is not an integer") from exc
        if not (0 <= p < limit):
            raise InputError(f"prefix {p} does not fit the {bits}-bit domain of level {level}")
        if p in seen:
            raise InputError(f"duplicate prefix {p} at level {level}")
        seen.add(p)
        result.append(p)
    return result


def _walk(
    key: KeyShare,
    frontier: Mapping[int, NodeState],
    start_depth: int,
    end_depth: int,
    prefixes: list[int],
) -> dict[int, NodeState]:
    """Expand ``frontier`` down to the nodes named by ``prefixes``.

    Nodes shared by several prefixes are expanded once.
    """
    current = dict(frontier)
    for d in range(start_depth, end_depth):
        shift = end_depth - d - 1
        cw = key.correction_words[d]
        expanded = {}
        nxt = {}
        for child in {p >> shift for p in prefixes}:
            parent = child >> 1
            state = current[parent]
            e = expanded.get(parent)
            if e is None:
                e = expanded[parent] = expand(state.seed)
            if child & 1:
                seed, control, cw_control = e.right_seed, e.right_control, cw.control_right
            else:
                seed, control, cw_control = e.left_seed, e.left_control, cw.control_left
            if state.control:
                seed = xor_bytes(seed, cw.seed)
                control ^= cw_control
            nxt[child] = NodeState(seed, control)
        current = nxt
    return current


def evaluate_level(
    context: EvaluationContext,
    prefixes: Optional[Iterable[int]] = None,
) -> tuple[NDArray[np.uint64], EvaluationContext]:
    """Evaluate the next hierarchy level at ``prefixes``.

    Args:
        context: Context returned by ``create_evaluation_context`` or by the
            previous ``evaluate_level`` call.
        prefixes: Prefixes of the current level's bit length. Past level 0
            each must extend a prefix evaluated at the previous level.
            ``None`` evaluates the whole domain of the level in order.

    Returns:
        (values, new_context): this helper's additive shares, aligned with
        ``prefixes``, and the context advanced by one level.

    Raises:
        StateError: If every level has already been evaluated.
        InputError: If a prefix is out of range, duplicated or does not
            extend a previously evaluated prefix.
    """
    params = context.parameters
    level = context.next_level
    if level >= params.num_levels:
        msg = f"evaluation context already consumed all {params.num_levels} levels"
        raise StateError(msg)

    bits = params.log_domain_size(level)
    if prefixes is None:
        if bits > MAX_FULL_EXPANSION_BITS:
            msg = f"refusing full expansion of {bits}-bit level {level}; pass explicit prefixes"
            raise InputError(msg)
        prefix_list = list(range(1 << bits))
    else:
        prefix_list = _validate_prefixes(prefixes, bits, level)

    if level == 0:
        start_depth = 0
        frontier: Mapping[int, NodeState] = {0: NodeState(context.key.seed, context.key.party)}
    else:
        start_depth = params.log_domain_size(level - 1)
        frontier = context.frontier
        shift = bits - start_depth
        for p in prefix_list:
            if (p >> shift) not in frontier:
                msg = f"prefix {p} does not extend a prefix evaluated at level {level - 1}"
                raise InputError(msg)

    nodes = _walk(context.key, frontier, start_depth, bits, prefix_list)

    mask = params.levels[level].mask
    vcw = context.key.value_corrections[level]
    negate = context.key.party == 1
    values = np.empty(len(prefix_list), dtype=np.uint64)
    for i, p in enumerate(prefix_list):
        node = nodes[p]
        v = (expand(node.seed).value_word + node.control * vcw) & mask
        if negate:
            v = (-v) & mask
        values[i] = v

    logger.debug("evaluated level %d at %d prefixes (party %d)", level, len(prefix_list), context.key.party)
    new_context = EvaluationContext(
        params,
        context.key,
        level + 1,
        {p: nodes[p] for p in prefix_list},
    )
    return values, new_context
