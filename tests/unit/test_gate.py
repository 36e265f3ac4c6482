"""Unit tests for the dependency gate."""

from dpf_histograms.query import partial_result_uri
from dpf_histograms.service import DependencyGate


class CountingStore:
    """Store stub recording every existence check."""

    def __init__(self, present=()):
        self.present = set(present)
        self.calls = []

    def exists(self, uri):
        self.calls.append(uri)
        return uri in self.present


def test_level_zero_has_no_dependency() -> None:
    store = CountingStore()
    assert DependencyGate(store).is_ready("partner", "q", 0)
    assert store.calls == []


def test_checks_partner_previous_level_exactly_once() -> None:
    uri = partial_result_uri("partner/shared", "q", 2)
    store = CountingStore({uri})
    gate = DependencyGate(store)
    assert gate.is_ready("partner/shared", "q", 3)
    assert store.calls == [uri]


def test_missing_result_is_not_ready() -> None:
    store = CountingStore()
    assert not DependencyGate(store).is_ready("partner/shared", "q", 1)
    assert len(store.calls) == 1
