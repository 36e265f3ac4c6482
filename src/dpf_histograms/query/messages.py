"""Documents exchanged between helpers and carried on the request channel."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import asdict, dataclass, replace
from typing import Any

from dpf_histograms.errors import ConfigError


@dataclass(frozen=True)
class HelperSharedInfo:
    """Static identity a helper exposes to its partner."""

    origin: str
    shared_dir: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True).encode()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> HelperSharedInfo:
        try:
            return cls(origin=str(data["origin"]), shared_dir=str(data["shared_dir"]))
        except (KeyError, TypeError) as exc:
            raise ConfigError(f"invalid helper shared info: {exc!r}") from exc

    @classmethod
    def from_json(cls, data: bytes | str) -> HelperSharedInfo:
        try:
            decoded = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ConfigError(f"invalid helper shared info: {exc}") from exc
        if not isinstance(decoded, dict):
            raise ConfigError("invalid helper shared info: expected a JSON object")
        return cls.from_dict(decoded)


def read_helper_shared_info(url: str, timeout: float = 10.0) -> HelperSharedInfo:
    """Fetch the partner's shared info document from its HTTP endpoint."""
    try:
        with urllib.request.urlopen(url, timeout=timeout) as resp:
            data = resp.read()
    except (urllib.error.URLError, OSError) as exc:
        raise ConfigError(f"cannot read helper shared info from {url}: {exc}") from exc
    return HelperSharedInfo.from_json(data)


@dataclass(frozen=True)
class QueryStep:
    """One "advance query ``query_id`` to ``level``" instruction.

    Attributes
    ----------
        query_id: str
            Identifier shared by both helpers for the whole query.
        level: int
            Hierarchy level this step computes.
        partner_shared_info: HelperSharedInfo
            Where the partner publishes its non-final PartialResults.
        expand_config_uri: str
            Location of the query's ExpansionPlan.
        total_epsilon: float
            Privacy budget of the whole query.
        result_dir: str
            End-result directory for the final level.
        partial_report_uri: str
            This helper's key shares, one per record.
        sum_params_uri: str
            Serialized DPF Parameters the reports were generated against.
    """

    query_id: str
    level: int
    partner_shared_info: HelperSharedInfo
    expand_config_uri: str
    total_epsilon: float
    result_dir: str
    partial_report_uri: str
    sum_params_uri: str

    def __post_init__(self) -> None:
        if not self.query_id:
            raise ConfigError("query_id must not be empty")
        if self.level < 0:
            raise ConfigError(f"level must be >= 0, got {self.level}")
        if self.total_epsilon <= 0:
            raise ConfigError(f"total_epsilon must be > 0, got {self.total_epsilon}")

    def next_level(self) -> QueryStep:
        """Return the step for the following level; this step is unchanged."""
        return replace(self, level=self.level + 1)

    @property
    def message_id(self) -> str:
        return f"{self.query_id}.{self.level}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_json(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True).encode()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueryStep:
        try:
            return cls(
                query_id=str(data["query_id"]),
                level=int(data["level"]),
                partner_shared_info=HelperSharedInfo.from_dict(data["partner_shared_info"]),
                expand_config_uri=str(data["expand_config_uri"]),
                total_epsilon=float(data["total_epsilon"]),
                result_dir=str(data["result_dir"]),
                partial_report_uri=str(data["partial_report_uri"]),
                sum_params_uri=str(data["sum_params_uri"]),
            )
        except (KeyError, TypeError, ValueError) as exc:
            if isinstance(exc, ConfigError):
                raise
            raise ConfigError(f"invalid query step: {exc!r}") from exc

    @classmethod
    def from_json(cls, data: bytes | str) -> QueryStep:
        try:
            decoded = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ConfigError(f"invalid query step: {exc}") from exc
        if not isinstance(decoded, dict):
            raise ConfigError("invalid query step: expected a JSON object")
        return cls.from_dict(decoded)
