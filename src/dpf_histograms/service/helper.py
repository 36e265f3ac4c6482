"""One helper process: wires config, storage, channel, worker and orchestrator."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from Crypto.Random import get_random_bytes

from dpf_histograms.aggregation import InProcessWorker, SubprocessWorker
from dpf_histograms.config import Config
from dpf_histograms.errors import ConfigError, StateError
from dpf_histograms.query import HelperSharedInfo, join_uri
from dpf_histograms.service.channel import FileChannel, RetryPolicy, consume
from dpf_histograms.service.gate import DependencyGate
from dpf_histograms.service.orchestrator import LevelOrchestrator
from dpf_histograms.service.storage import LocalFileStore

logger = logging.getLogger(__name__)

NOISE_KEY_SIZE = 32
NOISE_KEY_NAME = "noise_key"


class HelperService:
    """Long-running helper built from a ``Config``.

    Resources are created in ``setup()`` and released in ``close()``; use
    the service as a context manager so teardown runs on every exit path::

        with HelperService(config) as service:
            service.run(stop=stop_event)

    ``store`` and ``channel`` may be injected, e.g. an ``InMemoryChannel``
    for simulations; otherwise a ``LocalFileStore`` and a ``FileChannel``
    over ``config.channel.queue_dir`` are created.
    """

    def __init__(self, config: Config, *, store=None, channel=None) -> None:
        self.config = config
        self.store = store
        self.channel = channel
        self.worker = None
        self.orchestrator: Optional[LevelOrchestrator] = None
        self.policy = RetryPolicy.from_config(config.channel)

    @property
    def shared_info(self) -> HelperSharedInfo:
        return HelperSharedInfo(self.config.helper.origin, self.config.helper.shared_dir)

    def _noise_key(self) -> bytes:
        """Configured noise seed, or a key generated once and kept under ``work_dir``.

        A recompute of the same level after a restart must draw the same
        noise, so a generated key is reloaded on every later setup.
        """
        if self.config.worker.noise_seed:
            return bytes.fromhex(self.config.worker.noise_seed)
        uri = join_uri(self.config.helper.work_dir, NOISE_KEY_NAME)
        if self.store.exists(uri):
            key = self.store.read_bytes(uri)
            if len(key) != NOISE_KEY_SIZE:
                raise ConfigError(f"noise key {uri} has {len(key)} bytes, expected {NOISE_KEY_SIZE}")
            return key
        key = get_random_bytes(NOISE_KEY_SIZE)
        self.store.write_bytes(uri, key)
        logger.info("generated noise key %s", uri)
        return key

    def _make_worker(self):
        wcfg = self.config.worker
        if wcfg.runner == "in_process":
            noise_key = self._noise_key()
            return InProcessWorker(
                self.store,
                noise_key,
                add_noise=wcfg.add_noise,
                sensitivity=wcfg.sensitivity,
            )
        return SubprocessWorker(wcfg.binary, dataflow=wcfg.dataflow, poll_interval=self.config.channel.poll_interval)

    def setup(self) -> HelperService:
        if self.orchestrator is not None:
            return self
        if self.store is None:
            self.store = LocalFileStore()
        if self.channel is None:
            channel = FileChannel(self.config.channel.queue_dir)
            channel.recover_inflight()
            self.channel = channel
        self.worker = self._make_worker()
        self.orchestrator = LevelOrchestrator(
            self.store,
            self.channel,
            self.worker,
            DependencyGate(self.store),
            shared_dir=self.config.helper.shared_dir,
            work_dir=self.config.helper.work_dir,
            private_key_params_uri=self.config.worker.private_key_params_uri,
            runner=self.config.worker.runner,
        )
        logger.info(
            "helper %s ready (runner=%s, shared_dir=%s)",
            self.config.helper.origin, self.config.worker.runner, self.config.helper.shared_dir,
        )
        return self

    def close(self) -> None:
        if self.channel is not None:
            self.channel.close()
        if self.store is not None:
            self.store.close()
        self.orchestrator = None
        self.worker = None
        logger.info("helper %s closed", self.config.helper.origin)

    def __enter__(self) -> HelperService:
        return self.setup()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def run(
        self,
        stop: Optional[threading.Event] = None,
        max_messages: Optional[int] = None,
        *,
        stop_when_idle: bool = False,
    ) -> int:
        """Consume query steps until ``stop`` is set; returns deliveries handled."""
        if self.orchestrator is None:
            raise StateError("HelperService.run() called before setup()")
        orchestrator = self.orchestrator
        return consume(
            self.channel,
            lambda data: orchestrator.handle_message(data, stop),
            self.policy,
            stop=stop,
            max_messages=max_messages,
            poll_interval=self.config.channel.poll_interval,
            stop_when_idle=stop_when_idle,
        )
