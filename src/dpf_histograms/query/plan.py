"""Per-query expansion plan."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import yaml

from dpf_histograms.errors import ConfigError

logger = logging.getLogger(__name__)

_BUDGET_TOLERANCE = 1e-9


@dataclass(frozen=True)
class ExpansionPlan:
    """Static plan of a hierarchical query.

    Attributes
    ----------
        prefix_lengths: tuple[int, ...]
            Prefix bit length evaluated at each level.
        privacy_budget_per_prefix: tuple[float, ...]
            Fraction of the query's total epsilon spent at each level.
        expansion_threshold_per_prefix: tuple[float, ...]
            Minimum reconstructed count for a prefix of level L to be
            refined at level L+1. Defaults to zero everywhere.

    Raises
    ------
        ConfigError: If the lists have different lengths, prefix lengths are
            not strictly increasing, or weights are negative or sum above 1.
    """

    prefix_lengths: tuple[int, ...]
    privacy_budget_per_prefix: tuple[float, ...]
    expansion_threshold_per_prefix: tuple[float, ...] = ()

    def __post_init__(self) -> None:
        lengths = tuple(int(n) for n in self.prefix_lengths)
        weights = tuple(float(w) for w in self.privacy_budget_per_prefix)
        thresholds = tuple(float(t) for t in self.expansion_threshold_per_prefix) or (0.0,) * len(lengths)
        object.__setattr__(self, "prefix_lengths", lengths)
        object.__setattr__(self, "privacy_budget_per_prefix", weights)
        object.__setattr__(self, "expansion_threshold_per_prefix", thresholds)

        if not lengths:
            raise ConfigError("expansion plan needs at least one level")
        if len(weights) != len(lengths) or len(thresholds) != len(lengths):
            msg = (
                f"expansion plan lists differ in length: {len(lengths)} prefix lengths, "
                f"{len(weights)} budgets, {len(thresholds)} thresholds"
            )
            raise ConfigError(msg)
        if lengths[0] < 0 or any(b <= a for a, b in zip(lengths, lengths[1:])):
            raise ConfigError(f"prefix lengths must be non-negative and strictly increasing, got {lengths}")
        if any(w < 0 for w in weights):
            raise ConfigError(f"privacy budget weights must be >= 0, got {weights}")
        if sum(weights) > 1.0 + _BUDGET_TOLERANCE:
            raise ConfigError(f"privacy budget weights sum to {sum(weights)} > 1")

    @property
    def final_level(self) -> int:
        return len(self.prefix_lengths) - 1

    def epsilon_for_level(self, total_epsilon: float, level: int) -> float:
        """Per-level epsilon = total epsilon x the level's weight."""
        return total_epsilon * self.privacy_budget_per_prefix[level]

    def to_dict(self) -> dict[str, Any]:
        return {
            "prefix_lengths": list(self.prefix_lengths),
            "privacy_budget_per_prefix": list(self.privacy_budget_per_prefix),
            "expansion_threshold_per_prefix": list(self.expansion_threshold_per_prefix),
        }

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ExpansionPlan:
        try:
            return cls(
                prefix_lengths=tuple(data["prefix_lengths"]),
                privacy_budget_per_prefix=tuple(data["privacy_budget_per_prefix"]),
                expansion_threshold_per_prefix=tuple(data.get("expansion_threshold_per_prefix", ())),
            )
        except (KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"invalid expansion plan: {exc!r}") from exc


def read_expansion_plan(store, uri: str) -> ExpansionPlan:
    """Load a plan from YAML (or JSON, a YAML subset).

    Raises
    ------
        ConfigError: If the plan cannot be read or is invalid. Failures are
            never swallowed.
    """
    try:
        raw = store.read_bytes(uri)
        data = yaml.safe_load(raw)
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read expansion plan {uri}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"expansion plan {uri} is not a mapping")
    plan = ExpansionPlan.from_dict(data)
    logger.debug("loaded expansion plan %s: %s", uri, plan)
    return plan
