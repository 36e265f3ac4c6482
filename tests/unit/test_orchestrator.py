"""Unit tests for the level orchestrator state machine."""

import threading

import pytest

from dpf_histograms.errors import ComputationError, ConfigError, DependencyNotReady
from dpf_histograms.query import (
    ExpansionPlan,
    HelperSharedInfo,
    PartialResult,
    QueryStep,
    decode_prefixes,
    partial_result_uri,
)
from dpf_histograms.service import (
    DependencyGate,
    InMemoryChannel,
    LevelOrchestrator,
    LocalFileStore,
    StepState,
)

SHARED = "h0/shared"
PARTNER = "h1/shared"
RESULTS = "h0/results"


class FakeWorker:
    """Writes a deterministic PartialResult for the task's prefixes."""

    def __init__(self, store, error=None):
        self.store = store
        self.error = error
        self.tasks = []

    def run(self, task, cancel=None):
        self.tasks.append(task)
        if self.error is not None:
            self.store.write_bytes(task.output_uri, b"partial")
            raise self.error
        bits, prefixes = decode_prefixes(self.store.read_bytes(task.prefixes_uri))
        result = PartialResult(task.query_id, task.level, bits, 64, prefixes, [1] * len(prefixes))
        self.store.write_bytes(task.output_uri, result.to_bytes())


@pytest.fixture
def store(tmp_path) -> LocalFileStore:
    store = LocalFileStore(tmp_path)
    plan = ExpansionPlan((1, 2), (0.5, 0.5))
    store.write_bytes("plan.yaml", plan.to_yaml().encode())
    return store


@pytest.fixture
def channel() -> InMemoryChannel:
    return InMemoryChannel()


def _orchestrator(store, channel, worker) -> LevelOrchestrator:
    return LevelOrchestrator(
        store, channel, worker, DependencyGate(store), shared_dir=SHARED, work_dir="h0/work"
    )


def _step(level: int, plan_uri: str = "plan.yaml") -> QueryStep:
    return QueryStep(
        query_id="q",
        level=level,
        partner_shared_info=HelperSharedInfo("helper1", PARTNER),
        expand_config_uri=plan_uri,
        total_epsilon=1.0,
        result_dir=RESULTS,
        partial_report_uri="h0/report.bin",
        sum_params_uri="params.bin",
    )


def _publish_level0(store) -> None:
    for base in (SHARED, PARTNER):
        result = PartialResult("q", 0, 1, 64, (0, 1), (1, 1))
        store.write_bytes(partial_result_uri(base, "q", 0), result.to_bytes())


def test_non_final_level_publishes_and_requeues(store, channel) -> None:
    worker = FakeWorker(store)
    outcome = _orchestrator(store, channel, worker).handle(_step(0))

    assert outcome.state is StepState.REQUEUED
    assert outcome.visited == [
        StepState.AWAITING_DEPENDENCY,
        StepState.COMPUTING,
        StepState.PUBLISHING,
        StepState.REQUEUED,
    ]
    assert worker.tasks[0].epsilon == pytest.approx(0.5)
    assert outcome.output_uri == partial_result_uri(SHARED, "q", 0)
    assert store.exists(outcome.output_uri)
    assert not store.exists(outcome.output_uri + ".staging")

    msg = channel.pull(timeout=0.1)
    assert msg.id == "q.1"
    assert QueryStep.from_json(msg.data) == _step(1)


def test_missing_dependency_fails_without_work(store, channel) -> None:
    """No partner result: the step fails for redelivery and nothing runs."""
    worker = FakeWorker(store)
    with pytest.raises(DependencyNotReady) as info:
        _orchestrator(store, channel, worker).handle(_step(1))
    assert info.value.retriable
    assert worker.tasks == []
    assert channel.pending_count == 0


def test_final_level_writes_only_end_result(store, channel) -> None:
    _publish_level0(store)
    outcome = _orchestrator(store, channel, FakeWorker(store)).handle(_step(1))

    assert outcome.state is StepState.COMPLETED
    assert outcome.next_step is None
    assert outcome.output_uri == partial_result_uri(RESULTS, "q", 1)
    assert store.exists(outcome.output_uri)
    assert not store.exists(partial_result_uri(SHARED, "q", 1))
    assert channel.pending_count == 0


def test_level_beyond_plan_is_config_error(store, channel) -> None:
    _publish_level0(store)
    store.write_bytes(partial_result_uri(PARTNER, "q", 1), b"{}")
    worker = FakeWorker(store)
    with pytest.raises(ConfigError) as info:
        _orchestrator(store, channel, worker).handle(_step(2))
    assert not info.value.retriable
    assert worker.tasks == []


def test_unreadable_plan_is_config_error(store, channel) -> None:
    with pytest.raises(ConfigError):
        _orchestrator(store, channel, FakeWorker(store)).handle(_step(0, plan_uri="missing.yaml"))


@pytest.mark.parametrize("error,expected", [
    (ComputationError("worker exited with 1"), ComputationError),
    (RuntimeError("boom"), ComputationError),
    (ConfigError("bad prefixes"), ConfigError),
])
def test_worker_failure_publishes_nothing(store, channel, error, expected) -> None:
    worker = FakeWorker(store, error=error)
    with pytest.raises(expected):
        _orchestrator(store, channel, worker).handle(_step(0))
    uri = partial_result_uri(SHARED, "q", 0)
    assert not store.exists(uri)
    assert not store.exists(uri + ".staging")
    assert channel.pending_count == 0


def test_cancelled_step_publishes_nothing(store, channel) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(ComputationError):
        _orchestrator(store, channel, FakeWorker(store)).handle(_step(0), cancel)
    assert not store.exists(partial_result_uri(SHARED, "q", 0))


def test_redelivery_is_idempotent(store, channel) -> None:
    """Recomputing a level rewrites identical bytes and enqueues one next step."""
    orchestrator = _orchestrator(store, channel, FakeWorker(store))
    first = orchestrator.handle(_step(0))
    data = store.read_bytes(first.output_uri)
    second = orchestrator.handle(_step(0))

    assert store.read_bytes(second.output_uri) == data
    assert channel.pending_count == 1


def test_handle_message_rejects_garbage(store, channel) -> None:
    with pytest.raises(ConfigError):
        _orchestrator(store, channel, FakeWorker(store)).handle_message(b"{not json")
