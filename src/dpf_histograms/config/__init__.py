from .config import (
    DEFAULT_SENSITIVITY,
    ChannelConfig,
    Config,
    DataflowConfig,
    HelperConfig,
    WorkerConfig,
)

__all__ = [
    "DEFAULT_SENSITIVITY",
    "ChannelConfig",
    "Config",
    "DataflowConfig",
    "HelperConfig",
    "WorkerConfig",
]
