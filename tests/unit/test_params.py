"""Unit tests for the DPF parameter schema."""

import pytest

from dpf_histograms.dpf import LevelParameters, Parameters
from dpf_histograms.errors import ParameterError


def test_from_prefix_lengths_builds_levels() -> None:
    params = Parameters.from_prefix_lengths([2, 5, 8], element_bitsize=32)
    assert params.num_levels == 3
    assert params.tree_depth == 8
    assert params.log_domain_size(1) == 5
    assert params.element_bitsize(2) == 32
    assert params.level_at_depth() == {2: 0, 5: 1, 8: 2}


def test_level_modulus_and_mask() -> None:
    lp = LevelParameters(4, 16)
    assert lp.modulus == 1 << 16
    assert lp.mask == 0xFFFF


@pytest.mark.parametrize("levels", [
    (),
    (LevelParameters(3), LevelParameters(3)),
    (LevelParameters(5), LevelParameters(2)),
    (LevelParameters(2, 64), LevelParameters(4, 32)),
])
def test_invalid_schemas_rejected(levels) -> None:
    """Empty, non-increasing domains and shrinking widths are errors."""
    with pytest.raises(ParameterError):
        Parameters(levels)


@pytest.mark.parametrize("log_domain,bitsize", [(-1, 64), (65, 64), (4, 12), (4, 128)])
def test_invalid_level_rejected(log_domain, bitsize) -> None:
    with pytest.raises(ParameterError):
        LevelParameters(log_domain, bitsize)


def test_wire_format_is_lossless() -> None:
    params = Parameters((LevelParameters(1, 8), LevelParameters(3, 16), LevelParameters(9, 64)))
    assert Parameters.from_bytes(params.to_bytes()) == params


@pytest.mark.parametrize("blob", [
    b"",
    b"XXXX\x01\x01\x02\x40",
    b"DPFP\x02\x01\x02\x40",
    b"DPFP\x01\x02\x02\x40",
])
def test_corrupt_wire_format_rejected(blob) -> None:
    """Bad magic, unknown version or truncated levels raise ParameterError."""
    with pytest.raises(ParameterError):
        Parameters.from_bytes(blob)


def test_parameter_error_is_caller_fault() -> None:
    """Callers can tell input faults apart without reading messages."""
    with pytest.raises(ParameterError) as info:
        Parameters(())
    assert info.value.caller_fault
    assert not info.value.retriable
