"""Unit tests for expansion plans and level input resolution."""

import pytest

from dpf_histograms.errors import ConfigError
from dpf_histograms.query import (
    ExpansionPlan,
    HelperSharedInfo,
    PartialResult,
    QueryStep,
    decode_prefixes,
    encode_prefixes,
    partial_result_uri,
    read_expansion_plan,
    resolve_level_task,
)
from dpf_histograms.service import LocalFileStore


@pytest.fixture
def store(tmp_path) -> LocalFileStore:
    return LocalFileStore(tmp_path)


@pytest.fixture
def plan() -> ExpansionPlan:
    return ExpansionPlan(
        prefix_lengths=(1, 3),
        privacy_budget_per_prefix=(0.25, 0.75),
        expansion_threshold_per_prefix=(10.0, 0.0),
    )


def _step(level: int = 0) -> QueryStep:
    return QueryStep(
        query_id="q1",
        level=level,
        partner_shared_info=HelperSharedInfo("helper1", "helper1/shared"),
        expand_config_uri="plan.yaml",
        total_epsilon=2.0,
        result_dir="helper0/results",
        partial_report_uri="helper0/report.bin",
        sum_params_uri="params.bin",
    )


def test_plan_defaults_thresholds_to_zero() -> None:
    plan = ExpansionPlan((2, 4), (0.5, 0.5))
    assert plan.expansion_threshold_per_prefix == (0.0, 0.0)
    assert plan.final_level == 1


def test_epsilon_for_level_scales_total(plan: ExpansionPlan) -> None:
    assert plan.epsilon_for_level(2.0, 0) == pytest.approx(0.5)
    assert plan.epsilon_for_level(2.0, 1) == pytest.approx(1.5)


@pytest.mark.parametrize("lengths,weights,thresholds", [
    ((), (), ()),
    ((1, 2), (0.5,), ()),
    ((2, 2), (0.5, 0.5), ()),
    ((1, 2), (-0.1, 0.5), ()),
    ((1, 2), (0.7, 0.7), ()),
    ((1, 2), (0.5, 0.5), (1.0,)),
])
def test_invalid_plans_rejected(lengths, weights, thresholds) -> None:
    with pytest.raises(ConfigError):
        ExpansionPlan(lengths, weights, thresholds)


def test_read_expansion_plan_yaml_and_json(store: LocalFileStore, plan: ExpansionPlan) -> None:
    store.write_bytes("plan.yaml", plan.to_yaml().encode())
    assert read_expansion_plan(store, "plan.yaml") == plan

    store.write_bytes("plan.json", b'{"prefix_lengths": [1, 3], "privacy_budget_per_prefix": [0.25, 0.75]}')
    assert read_expansion_plan(store, "plan.json").prefix_lengths == (1, 3)


@pytest.mark.parametrize("content", [None, b"- 1\n- 2\n", b"{unclosed", b"prefix_lengths: [1]\n"])
def test_read_expansion_plan_failures_raise_config_error(store: LocalFileStore, content) -> None:
    """Missing, malformed or incomplete plans are never swallowed."""
    if content is not None:
        store.write_bytes("plan.yaml", content)
    with pytest.raises(ConfigError) as info:
        read_expansion_plan(store, "plan.yaml")
    assert not info.value.retriable


def test_prefixes_file_round_trip() -> None:
    assert decode_prefixes(encode_prefixes(3, [1, 5])) == (3, [1, 5])
    with pytest.raises(ConfigError):
        decode_prefixes(b"[]")


def test_level_zero_task_covers_full_domain(store: LocalFileStore, plan: ExpansionPlan) -> None:
    task = resolve_level_task(store, _step(0), plan, shared_dir="helper0/shared", work_dir="helper0/work")
    assert not task.final
    assert task.epsilon == pytest.approx(0.5)
    assert task.output_uri == partial_result_uri("helper0/shared", "q1", 0)
    assert task.context_in_uri is None
    assert task.context_out_uri is not None
    assert decode_prefixes(store.read_bytes(task.prefixes_uri)) == (1, [0, 1])


def test_final_level_task_refines_heavy_prefixes(store: LocalFileStore, plan: ExpansionPlan) -> None:
    """Level 1 expands level-0 prefixes whose combined count meets the threshold."""
    modulus = 1 << 64
    own = PartialResult("q1", 0, 1, 64, (0, 1), (7, (modulus - 5 + 3) % modulus))
    partner = PartialResult("q1", 0, 1, 64, (0, 1), ((12 - 7) % modulus, 5))
    store.write_bytes(partial_result_uri("helper0/shared", "q1", 0), own.to_bytes())
    store.write_bytes(partial_result_uri("helper1/shared", "q1", 0), partner.to_bytes())

    task = resolve_level_task(store, _step(1), plan, shared_dir="helper0/shared", work_dir="helper0/work")
    assert task.final
    assert task.output_uri == partial_result_uri("helper0/results", "q1", 1)
    assert not task.output_uri.startswith("helper0/shared")
    assert task.context_out_uri is None
    # counts: prefix 0 -> 12, prefix 1 -> 3; only prefix 0 passes threshold 10
    assert decode_prefixes(store.read_bytes(task.prefixes_uri)) == (3, [0, 1, 2, 3])


def test_level_beyond_plan_rejected(store: LocalFileStore, plan: ExpansionPlan) -> None:
    with pytest.raises(ConfigError):
        resolve_level_task(store, _step(2), plan, shared_dir="s", work_dir="w")
