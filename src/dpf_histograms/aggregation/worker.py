"""Evaluation work: aggregate one level of key shares into a PartialResult.

The orchestrator only depends on ``AggregationWorker``. Two
implementations are provided:

- ``InProcessWorker`` evaluates the shares in this process.
- ``SubprocessWorker`` delegates to an external aggregation binary.
"""

from __future__ import annotations

import hashlib
import logging
import subprocess
import threading
from typing import Optional, Protocol, Sequence

import numpy as np

from dpf_histograms.aggregation.reports import pack_blobs, unpack_blobs
from dpf_histograms.config import DEFAULT_SENSITIVITY, DataflowConfig
from dpf_histograms.differential_privacy import (
    add_noise_vectorized,
    helper_noise_params,
    modulo_clip,
    stdgeo_tau_noise_std,
)
from dpf_histograms.dpf import (
    EvaluationContext,
    Parameters,
    create_evaluation_context,
    evaluate_level,
)
from dpf_histograms.errors import ComputationError, ConfigError
from dpf_histograms.query import LevelTask, PartialResult, decode_prefixes

logger = logging.getLogger(__name__)


class AggregationWorker(Protocol):
    """Capability that turns a LevelTask into a PartialResult at ``task.output_uri``."""

    def run(self, task: LevelTask, cancel: Optional[threading.Event] = None) -> None:
        ...


def _check_cancel(cancel: Optional[threading.Event], task: LevelTask) -> None:
    if cancel is not None and cancel.is_set():
        raise ComputationError(f"query {task.query_id} level {task.level} cancelled")


class InProcessWorker:
    """Evaluate every record's key share in this process.

    Level 0 starts from the helper's partial report (one serialized key
    share per record). Later levels resume from the contexts stored by the
    previous level. Noise is seeded from ``noise_key`` and the task, so
    recomputing a level produces the same bytes.
    """

    def __init__(
        self,
        store,
        noise_key: bytes,
        *,
        add_noise: bool = True,
        sensitivity: float = DEFAULT_SENSITIVITY,
        num_helpers: int = 2,
    ) -> None:
        self.store = store
        self.noise_key = noise_key
        self.add_noise = add_noise
        self.sensitivity = sensitivity
        self.num_helpers = num_helpers

    def _noise_rng(self, task: LevelTask) -> np.random.Generator:
        digest = hashlib.sha256(
            self.noise_key + task.query_id.encode() + task.level.to_bytes(4, "little")
        ).digest()
        return np.random.default_rng(int.from_bytes(digest, "little"))

    def _read(self, uri: str) -> bytes:
        try:
            return self.store.read_bytes(uri)
        except OSError as exc:
            raise ComputationError(f"cannot read {uri}: {exc}") from exc

    def _load_contexts(self, task: LevelTask, parameters: Parameters) -> list[EvaluationContext]:
        if task.level == 0:
            reports = unpack_blobs(self._read(task.partial_report_uri))
            return [create_evaluation_context(parameters, blob) for blob in reports]
        if task.context_in_uri is None:
            raise ConfigError(f"level {task.level} needs the previous level's contexts")
        blobs = unpack_blobs(self._read(task.context_in_uri))
        return [EvaluationContext.from_bytes(blob) for blob in blobs]

    def run(self, task: LevelTask, cancel: Optional[threading.Event] = None) -> None:
        parameters = Parameters.from_bytes(self._read(task.sum_params_uri))
        if task.level >= parameters.num_levels:
            raise ConfigError(f"level {task.level} beyond the {parameters.num_levels} levels of the reports")
        bits, prefixes = decode_prefixes(self._read(task.prefixes_uri))
        if bits != parameters.log_domain_size(task.level):
            msg = f"prefixes have {bits} bits but level {task.level} has {parameters.log_domain_size(task.level)}"
            raise ConfigError(msg)
        bitsize = parameters.element_bitsize(task.level)
        modulus = 1 << bitsize

        contexts = self._load_contexts(task, parameters)
        logger.info(
            "query %s level %d: evaluating %d records at %d prefixes",
            task.query_id, task.level, len(contexts), len(prefixes),
        )

        total = np.zeros(len(prefixes), dtype=np.uint64)
        advanced = []
        for ctx in contexts:
            _check_cancel(cancel, task)
            values, new_ctx = evaluate_level(ctx, prefixes)
            total += values
            advanced.append(new_ctx)
        total = modulo_clip(total, modulus)

        if self.add_noise and prefixes:
            if task.epsilon <= 0:
                raise ConfigError(f"level {task.level} has no privacy budget")
            alpha, beta = helper_noise_params(task.epsilon, self.sensitivity, self.num_helpers)
            logger.info(
                "query %s level %d: adding noise share (epsilon=%.4g, total noise std %.3f)",
                task.query_id, task.level, task.epsilon, stdgeo_tau_noise_std(task.epsilon, self.sensitivity),
            )
            noise = add_noise_vectorized(len(prefixes), alpha, beta, rng=self._noise_rng(task))
            total = modulo_clip(total + modulo_clip(noise, modulus), modulus)

        _check_cancel(cancel, task)
        if task.context_out_uri is not None:
            self.store.write_bytes(task.context_out_uri, pack_blobs(c.to_bytes() for c in advanced))

        result = PartialResult(
            query_id=task.query_id,
            level=task.level,
            bit_length=bits,
            element_bitsize=bitsize,
            prefixes=tuple(prefixes),
            values=tuple(int(v) for v in total),
        )
        self.store.write_bytes(task.output_uri, result.to_bytes())


class SubprocessWorker:
    """Run the external aggregation binary for a level.

    The process is polled every ``poll_interval`` seconds and killed when
    the cancel event is set.
    """

    def __init__(
        self,
        binary: str,
        *,
        dataflow: Optional[DataflowConfig] = None,
        poll_interval: float = 0.5,
    ) -> None:
        self.binary = binary
        self.dataflow = dataflow or DataflowConfig()
        self.poll_interval = poll_interval

    def build_args(self, task: LevelTask) -> list[str]:
        args = [
            "--partial_report_file=" + task.partial_report_uri,
            "--sum_parameters_file=" + task.sum_params_uri,
            "--prefixes_file=" + task.prefixes_uri,
            "--partial_histogram_file=" + task.output_uri,
            f"--epsilon={task.epsilon:f}",
            "--private_key_params_uri=" + task.key_params_uri,
            "--runner=" + task.runner,
        ]
        if task.context_in_uri is not None:
            args.append("--evaluation_context_in=" + task.context_in_uri)
        if task.context_out_uri is not None:
            args.append("--evaluation_context_out=" + task.context_out_uri)
        if task.runner == "dataflow":
            args += [
                "--project=" + self.dataflow.project,
                "--region=" + self.dataflow.region,
                "--temp_location=" + self.dataflow.temp_location,
                "--staging_location=" + self.dataflow.staging_location,
                "--worker_binary=" + self.binary,
            ]
        return args

    def _command(self, task: LevelTask) -> Sequence[str]:
        return [self.binary, *self.build_args(task)]

    def run(self, task: LevelTask, cancel: Optional[threading.Event] = None) -> None:
        cmd = self._command(task)
        logger.info("Running command\n%s", "\n".join(cmd))
        try:
            proc = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        except OSError as exc:
            raise ComputationError(f"cannot start {self.binary}: {exc}") from exc

        while True:
            try:
                out, err = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.is_set():
                    proc.kill()
                    proc.communicate()
                    raise ComputationError(f"query {task.query_id} level {task.level} cancelled") from None

        if proc.returncode != 0:
            logger.error("%s exited with %d: %s", self.binary, proc.returncode, err)
            raise ComputationError(f"{self.binary} exited with {proc.returncode}: {err.strip()}")
        logger.info("output of cmd: %s", out)
