"""Configuration module for the aggregation helper service."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

DEFAULT_SENSITIVITY = 1.0
RUNNERS = ("in_process", "direct", "dataflow")


@dataclass(frozen=True)
class HelperConfig:
    """Static identity of this helper.

    Attributes
    ----------
        origin: str
            Identifier the partner uses to refer to this helper.
        shared_dir: str
            Directory the partner reads non-final PartialResults from.
        work_dir: str
            Private directory for prefixes and evaluation contexts.

    Raises
    ------
        ValueError: If any field is empty.
    """

    origin: str = "helper"
    shared_dir: str = "shared"
    work_dir: str = "work"

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        for name in ("origin", "shared_dir", "work_dir"):
            if not getattr(self, name):
                msg = f"{name} must not be empty"
                raise ValueError(msg)


@dataclass(frozen=True)
class ChannelConfig:
    """Request channel and redelivery policy.

    Attributes
    ----------
        queue_dir: str
            Spool directory of the durable request channel.
        max_attempts: int
            Deliveries of one message before it is dead-lettered.
        initial_backoff: float
            Redelivery delay after the first failure, in seconds.
        max_backoff: float
            Upper bound of the redelivery delay, in seconds.
        backoff_multiplier: float
            Growth factor of the delay between attempts.
        poll_interval: float
            Pull timeout of the consume loop, in seconds.

    Raises
    ------
        ValueError: If max_attempts < 1, a delay is negative, or the
            multiplier is below 1.
    """

    queue_dir: str = "queue"
    max_attempts: int = 5
    initial_backoff: float = 1.0
    max_backoff: float = 60.0
    backoff_multiplier: float = 2.0
    poll_interval: float = 0.5

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if self.max_attempts < 1:
            msg = f"max_attempts must be >= 1, got {self.max_attempts}"
            raise ValueError(msg)
        if self.initial_backoff < 0 or self.max_backoff < 0:
            msg = f"backoff must be >= 0, got ({self.initial_backoff}, {self.max_backoff})"
            raise ValueError(msg)
        if self.backoff_multiplier < 1:
            msg = f"backoff_multiplier must be >= 1, got {self.backoff_multiplier}"
            raise ValueError(msg)
        if self.poll_interval <= 0:
            msg = f"poll_interval must be > 0, got {self.poll_interval}"
            raise ValueError(msg)


@dataclass(frozen=True)
class DataflowConfig:
    """Settings forwarded to the external worker when it runs on Dataflow."""

    project: str = ""
    region: str = ""
    temp_location: str = ""
    staging_location: str = ""


@dataclass(frozen=True)
class WorkerConfig:
    """Evaluation-work settings.

    Attributes
    ----------
        runner: str
            ``in_process`` evaluates inside this process; ``direct`` and
            ``dataflow`` delegate to ``binary``.
        binary: str
            Path of the external aggregation binary.
        private_key_params_uri: str
            Location of the helper's report-decryption parameters.
        noise_seed: str
            Hex secret mixed into the noise seed; empty generates one on
            first setup and keeps it under ``helper.work_dir``.
        add_noise: bool
            Whether the in-process worker adds its DP noise share.
        sensitivity: float
            L1 sensitivity of one record's contribution.
        dataflow: DataflowConfig
            Extra flags for the ``dataflow`` runner.

    Raises
    ------
        ValueError: On an unknown runner, a missing binary for an external
            runner, a non-hex noise seed or a non-positive sensitivity.
    """

    runner: str = "in_process"
    binary: str = ""
    private_key_params_uri: str = ""
    noise_seed: str = ""
    add_noise: bool = True
    sensitivity: float = DEFAULT_SENSITIVITY
    dataflow: DataflowConfig = field(default_factory=DataflowConfig)

    def __post_init__(self) -> None:
        """Validate values after initialization."""
        if self.runner not in RUNNERS:
            msg = f"runner must be one of {RUNNERS}, got {self.runner!r}"
            raise ValueError(msg)
        if self.runner != "in_process" and not self.binary:
            msg = f"runner {self.runner!r} needs a worker binary"
            raise ValueError(msg)
        if self.noise_seed:
            try:
                bytes.fromhex(self.noise_seed)
            except ValueError as exc:
                msg = "noise_seed must be a hex string"
                raise ValueError(msg) from exc
        if self.sensitivity <= 0:
            msg = f"sensitivity must be > 0, got {self.sensitivity}"
            raise ValueError(msg)


@dataclass(frozen=True)
class Config:
    """
    Top-level configuration of one helper.

    Groups
    ----------
        helper: HelperConfig
            Identity and directories of this helper.
        channel: ChannelConfig
            Request channel location and redelivery policy.
        worker: WorkerConfig
            How the evaluation work is run.
        log_level: str
            Logging level name.
        verbose: bool
            Flag to enable debug output.

    Raises
    ------
        ValueError: If any of the sub-configs contain invalid values.
    """

    helper: HelperConfig = field(default_factory=HelperConfig)
    channel: ChannelConfig = field(default_factory=ChannelConfig)
    worker: WorkerConfig = field(default_factory=WorkerConfig)
    log_level: str = "INFO"
    verbose: bool = False

    @property
    def effective_log_level(self) -> str:
        return "DEBUG" if self.verbose else self.log_level

    def to_dict(self) -> dict[str, Any]:
        """Recursively convert to plain dict (for logging, serialization)."""
        return asdict(self)

    def to_yaml(self) -> str:
        """Dump entire config as a YAML string."""
        return yaml.safe_dump(self.to_dict(), sort_keys=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Build Config by unpacking each sub-dict into its sub-config."""
        worker = dict(data.get("worker", {}))
        dataflow = DataflowConfig(**worker.pop("dataflow", {}))
        return cls(
            helper=HelperConfig(**data.get("helper", {})),
            channel=ChannelConfig(**data.get("channel", {})),
            worker=WorkerConfig(dataflow=dataflow, **worker),
            log_level=data.get("log_level", "INFO"),
            verbose=data.get("verbose", False),
        )

    @classmethod
    def from_yaml(cls, path: str | Path) -> Config:
        """Load a YAML file and return a Config."""
        path = Path(path)
        with path.open() as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)
