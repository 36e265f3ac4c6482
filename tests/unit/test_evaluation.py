"""Unit tests for level-by-level evaluation of key shares."""

import numpy as np
import pytest

from dpf_histograms.dpf import (
    EvaluationContext,
    Parameters,
    create_evaluation_context,
    evaluate_level,
    generate_keys,
)
from dpf_histograms.errors import InputError, ParameterError, StateError


@pytest.fixture
def params() -> Parameters:
    return Parameters.from_prefix_lengths([2, 4, 7], element_bitsize=32)


def _contexts(params, alpha, beta):
    key_a, key_b = generate_keys(params, alpha, beta)
    return create_evaluation_context(params, key_a), create_evaluation_context(params, key_b)


def _reconstruct(a, b, bitsize):
    return ((a.astype(np.uint64) + b.astype(np.uint64)) & np.uint64((1 << bitsize) - 1)).tolist()


def test_full_domain_sums_to_point_function(params: Parameters) -> None:
    """Shares sum to beta on alpha's prefix and to zero elsewhere, level by level."""
    alpha, betas = 0b1011010, [5, 7, 9]
    ctx_a, ctx_b = _contexts(params, alpha, betas)
    for level in range(params.num_levels):
        bits = params.log_domain_size(level)
        if level == 0:
            prefixes = None
        else:
            prev = params.log_domain_size(level - 1)
            prefixes = [(alpha >> (params.tree_depth - prev) << (bits - prev)) | i for i in range(1 << (bits - prev))]
        va, ctx_a = evaluate_level(ctx_a, prefixes)
        vb, ctx_b = evaluate_level(ctx_b, prefixes)
        evaluated = list(range(1 << bits)) if prefixes is None else prefixes
        target = alpha >> (params.tree_depth - bits)
        expected = [betas[level] if p == target else 0 for p in evaluated]
        assert _reconstruct(va, vb, 32) == expected
    assert ctx_a.exhausted and ctx_b.exhausted


def test_values_align_with_given_prefix_order() -> None:
    params = Parameters.from_prefix_lengths([3])
    ctx_a, ctx_b = _contexts(params, 6, 1)
    prefixes = [7, 6, 0, 3]
    va, _ = evaluate_level(ctx_a, prefixes)
    vb, _ = evaluate_level(ctx_b, prefixes)
    assert va.dtype == np.uint64
    assert _reconstruct(va, vb, 64) == [0, 1, 0, 0]


def test_single_share_looks_random(params: Parameters) -> None:
    """One share alone does not single out alpha's prefix."""
    ctx_a, _ = _contexts(params, 3, 1)
    va, _ = evaluate_level(ctx_a)
    assert len(set(va.tolist())) == len(va)


def test_evaluate_does_not_mutate_input_context(params: Parameters) -> None:
    """Evaluation leaves its input untouched, so a stored context recomputes the same level."""
    ctx_a, _ = _contexts(params, 9, 1)
    first, advanced = evaluate_level(ctx_a)
    second, _ = evaluate_level(ctx_a)
    assert ctx_a.next_level == 0
    assert advanced.next_level == 1
    assert np.array_equal(first, second)


def test_serialized_context_continues_identically(params: Parameters) -> None:
    """A context restored from bytes gives the same outputs as the in-memory one."""
    alpha = 0b0110011
    ctx_a, _ = _contexts(params, alpha, 1)
    _, ctx_a = evaluate_level(ctx_a)
    restored = EvaluationContext.from_bytes(ctx_a.to_bytes())
    assert restored == ctx_a

    prefixes = [alpha >> 3, (alpha >> 3) ^ 1]
    direct, ctx_direct = evaluate_level(ctx_a, prefixes)
    resumed, ctx_resumed = evaluate_level(restored, prefixes)
    assert np.array_equal(direct, resumed)
    assert ctx_direct.to_bytes() == ctx_resumed.to_bytes()


def test_create_context_from_wire_formats(params: Parameters) -> None:
    key_a, _ = generate_keys(params, 1, 1)
    ctx = create_evaluation_context(params.to_bytes(), key_a.to_bytes())
    assert ctx == create_evaluation_context(params, key_a)


def test_create_context_rejects_mismatched_share(params: Parameters) -> None:
    key_a, _ = generate_keys(Parameters.from_prefix_lengths([2, 4]), 1, 1)
    with pytest.raises(ParameterError):
        create_evaluation_context(params, key_a)
    with pytest.raises(ParameterError):
        create_evaluation_context(params, key_a.to_bytes())


def test_exhausted_context_rejected() -> None:
    params = Parameters.from_prefix_lengths([1])
    ctx, _ = _contexts(params, 1, 1)
    _, ctx = evaluate_level(ctx)
    with pytest.raises(StateError):
        evaluate_level(ctx)


@pytest.mark.parametrize("prefixes", [[4], [-1], [1, 1], ["a"]])
def test_invalid_prefixes_rejected(params: Parameters, prefixes) -> None:
    """Out of range, duplicate or non-integer prefixes raise InputError."""
    ctx, _ = _contexts(params, 0, 1)
    with pytest.raises(InputError):
        evaluate_level(ctx, prefixes)


def test_prefix_must_extend_previous_level(params: Parameters) -> None:
    ctx, _ = _contexts(params, 0, 1)
    _, ctx = evaluate_level(ctx, [0, 1])
    with pytest.raises(InputError):
        evaluate_level(ctx, [0b1100])


def test_full_expansion_bounded() -> None:
    params = Parameters.from_prefix_lengths([30])
    ctx, _ = _contexts(params, 0, 1)
    with pytest.raises(InputError):
        evaluate_level(ctx)


def test_corrupt_context_rejected(params: Parameters) -> None:
    ctx, _ = _contexts(params, 0, 1)
    blob = evaluate_level(ctx)[1].to_bytes()
    with pytest.raises(ParameterError):
        EvaluationContext.from_bytes(blob[:-3])
    with pytest.raises(ParameterError):
        EvaluationContext.from_bytes(b"XXXX" + blob[4:])
