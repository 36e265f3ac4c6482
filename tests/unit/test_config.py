"""Unit tests for the helper configuration."""

import pytest

from dpf_histograms.config import DEFAULT_SENSITIVITY, ChannelConfig, Config, HelperConfig, WorkerConfig


@pytest.fixture
def config() -> Config:
    """Provides a default Config instance for tests."""
    return Config()


def test_default_config_is_valid(config: Config) -> None:
    assert config.worker.runner == "in_process"
    assert config.channel.max_attempts >= 1
    assert config.effective_log_level == "INFO"


def test_verbose_forces_debug() -> None:
    assert Config(verbose=True).effective_log_level == "DEBUG"


def test_sensitivity_is_a_worker_setting(config: Config) -> None:
    assert config.worker.sensitivity == DEFAULT_SENSITIVITY
    assert "DEFAULT_SENSITIVITY" not in vars(Config)
    assert set(config.to_dict()) == {"helper", "channel", "worker", "log_level", "verbose"}


def test_yaml_round_trip(tmp_path, config: Config) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(config.to_yaml())
    assert Config.from_yaml(path) == config


def test_from_dict_nested_groups() -> None:
    cfg = Config.from_dict({
        "helper": {"origin": "helper1", "shared_dir": "/s", "work_dir": "/w"},
        "channel": {"max_attempts": 3},
        "worker": {"runner": "dataflow", "binary": "/bin/agg", "dataflow": {"project": "p", "region": "r"}},
        "verbose": True,
    })
    assert cfg.helper.origin == "helper1"
    assert cfg.channel.max_attempts == 3
    assert cfg.worker.dataflow.project == "p"
    assert cfg.effective_log_level == "DEBUG"


def test_empty_yaml_gives_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert Config.from_yaml(path) == Config()


@pytest.mark.parametrize("factory", [
    lambda: HelperConfig(origin=""),
    lambda: ChannelConfig(max_attempts=0),
    lambda: ChannelConfig(initial_backoff=-1.0),
    lambda: ChannelConfig(backoff_multiplier=0.5),
    lambda: ChannelConfig(poll_interval=0.0),
    lambda: WorkerConfig(runner="spark"),
    lambda: WorkerConfig(runner="direct"),
    lambda: WorkerConfig(noise_seed="xyz"),
    lambda: WorkerConfig(sensitivity=0.0),
])
def test_invalid_values_rejected(factory) -> None:
    with pytest.raises(ValueError):
        factory()
