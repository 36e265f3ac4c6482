"""Resolution of the concrete inputs of one query level."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Optional

from dpf_histograms.errors import ConfigError
from dpf_histograms.query.messages import QueryStep
from dpf_histograms.query.plan import ExpansionPlan
from dpf_histograms.query.results import (
    PartialResult,
    combine_partial_results,
    extend_prefixes,
    join_uri,
    partial_result_uri,
    select_heavy_prefixes,
)

logger = logging.getLogger(__name__)


def prefixes_uri(work_dir: str, query_id: str, level: int) -> str:
    return join_uri(work_dir, query_id, f"prefixes_level_{level}.json")


def contexts_uri(work_dir: str, query_id: str, level: int) -> str:
    return join_uri(work_dir, query_id, f"contexts_level_{level}.bin")


@dataclass(frozen=True)
class LevelTask:
    """Everything the evaluation work needs for one level."""

    query_id: str
    level: int
    final: bool
    partial_report_uri: str
    sum_params_uri: str
    prefixes_uri: str
    epsilon: float
    key_params_uri: str
    runner: str
    output_uri: str
    context_in_uri: Optional[str] = None
    context_out_uri: Optional[str] = None

    def with_output(self, uri: str) -> LevelTask:
        return replace(self, output_uri=uri)


def encode_prefixes(bit_length: int, prefixes: list[int]) -> bytes:
    return json.dumps({"bit_length": bit_length, "prefixes": prefixes}, separators=(",", ":")).encode()


def decode_prefixes(data: bytes) -> tuple[int, list[int]]:
    try:
        d = json.loads(data)
        return int(d["bit_length"]), [int(p) for p in d["prefixes"]]
    except (json.JSONDecodeError, UnicodeDecodeError, KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid prefixes file: {exc!r}") from exc


def _read_result(store, uri: str) -> PartialResult:
    try:
        return PartialResult.from_bytes(store.read_bytes(uri))
    except OSError as exc:
        raise ConfigError(f"cannot read partial result {uri}: {exc}") from exc


def level_prefixes(
    store,
    step: QueryStep,
    plan: ExpansionPlan,
    shared_dir: str,
) -> list[int]:
    """Prefixes evaluated at ``step.level``.

    Level 0 covers the whole domain of the first prefix length. Later levels
    refine the previous level's heavy prefixes, reconstructed from both
    helpers' published shares, so both helpers derive the same list.
    """
    level = step.level
    bits = plan.prefix_lengths[level]
    if level == 0:
        return list(range(1 << bits))

    prev_bits = plan.prefix_lengths[level - 1]
    own = _read_result(store, partial_result_uri(shared_dir, step.query_id, level - 1))
    partner = _read_result(
        store, partial_result_uri(step.partner_shared_info.shared_dir, step.query_id, level - 1)
    )
    counts = combine_partial_results(own, partner)
    threshold = plan.expansion_threshold_per_prefix[level - 1]
    heavy = select_heavy_prefixes(counts, threshold)
    logger.info(
        "query %s level %d: %d of %d prefixes reach threshold %.2f",
        step.query_id, level - 1, len(heavy), len(counts), threshold,
    )
    return extend_prefixes(heavy, prev_bits, bits)


def resolve_level_task(
    store,
    step: QueryStep,
    plan: ExpansionPlan,
    *,
    shared_dir: str,
    work_dir: str,
    key_params_uri: str = "",
    runner: str = "in_process",
) -> LevelTask:
    """Write the level's prefixes file and collect the worker's inputs.

    The final level's result goes to the query's end-result directory and is
    never written to ``shared_dir``, which the partner can read.

    Raises
    ------
        ConfigError: If the step's level is outside the plan or a previous
            result cannot be read.
    """
    level = step.level
    if level > plan.final_level:
        msg = f"expect request level <= final level {plan.final_level}, got {level}"
        raise ConfigError(msg)
    final = level == plan.final_level

    prefixes = level_prefixes(store, step, plan, shared_dir)
    p_uri = prefixes_uri(work_dir, step.query_id, level)
    store.write_bytes(p_uri, encode_prefixes(plan.prefix_lengths[level], prefixes))

    if final:
        output_uri = partial_result_uri(step.result_dir, step.query_id, level)
    else:
        output_uri = partial_result_uri(shared_dir, step.query_id, level)

    return LevelTask(
        query_id=step.query_id,
        level=level,
        final=final,
        partial_report_uri=step.partial_report_uri,
        sum_params_uri=step.sum_params_uri,
        prefixes_uri=p_uri,
        epsilon=plan.epsilon_for_level(step.total_epsilon, level),
        key_params_uri=key_params_uri,
        runner=runner,
        output_uri=output_uri,
        context_in_uri=contexts_uri(work_dir, step.query_id, level - 1) if level > 0 else None,
        context_out_uri=None if final else contexts_uri(work_dir, step.query_id, level),
    )
