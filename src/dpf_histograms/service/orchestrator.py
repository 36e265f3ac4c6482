"""Per-helper state machine that advances one query by one level.

A delivered QueryStep moves through::

    AWAITING_DEPENDENCY -> COMPUTING -> PUBLISHING -> REQUEUED | COMPLETED

and any failure leaves it FAILED. Failures are raised to the caller, which
is the channel's consume loop; the orchestrator itself never waits, polls
or retries.
"""

from __future__ import annotations

import enum
import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from dpf_histograms.errors import AggregationError, ComputationError, ConfigError, DependencyNotReady
from dpf_histograms.query import QueryStep, read_expansion_plan, resolve_level_task

logger = logging.getLogger(__name__)

STAGING_SUFFIX = ".staging"


class StepState(enum.Enum):
    AWAITING_DEPENDENCY = "awaiting_dependency"
    COMPUTING = "computing"
    PUBLISHING = "publishing"
    REQUEUED = "requeued"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StepOutcome:
    """Result of handling one QueryStep.

    Attributes
    ----------
        state: StepState
            Terminal state, REQUEUED or COMPLETED.
        visited: list[StepState]
            Every state entered, in order.
        output_uri: str
            Where the level's PartialResult was published.
        next_step: QueryStep | None
            Step published for the following level, if any.
    """

    state: StepState
    visited: list[StepState] = field(default_factory=list)
    output_uri: str = ""
    next_step: Optional[QueryStep] = None


class LevelOrchestrator:
    """Drive one helper's side of a hierarchical query, one level per message.

    Args:
        store: Object store holding plans, prefixes, contexts and results.
        channel: Request channel the next level's step is published to.
        worker: Evaluation work capability.
        gate: Dependency gate over the partner's shared directory.
        shared_dir: This helper's partner-visible directory.
        work_dir: This helper's private scratch directory.
        private_key_params_uri: Passed through to the evaluation work.
        runner: Execution mode passed through to the evaluation work.
    """

    def __init__(
        self,
        store,
        channel,
        worker,
        gate,
        *,
        shared_dir: str,
        work_dir: str,
        private_key_params_uri: str = "",
        runner: str = "in_process",
    ) -> None:
        self.store = store
        self.channel = channel
        self.worker = worker
        self.gate = gate
        self.shared_dir = shared_dir
        self.work_dir = work_dir
        self.private_key_params_uri = private_key_params_uri
        self.runner = runner

    def _enter(self, visited: list[StepState], state: StepState, step: QueryStep) -> None:
        visited.append(state)
        logger.info("query %s level %d: %s", step.query_id, step.level, state.value)

    def handle_message(self, data: bytes, cancel: Optional[threading.Event] = None) -> StepOutcome:
        return self.handle(QueryStep.from_json(data), cancel)

    def handle(self, step: QueryStep, cancel: Optional[threading.Event] = None) -> StepOutcome:
        """Process ``step`` to completion or failure.

        Raises
        ------
            DependencyNotReady: The partner's previous-level result is absent.
            ConfigError: The step's level is outside the expansion plan, or
                the plan cannot be read.
            ComputationError: The evaluation work failed or was cancelled.
        """
        visited: list[StepState] = []
        try:
            return self._handle(step, visited, cancel)
        except Exception as exc:
            visited.append(StepState.FAILED)
            logger.warning(
                "query %s level %d: failed after %s: %s",
                step.query_id, step.level, [s.value for s in visited[:-1]], exc,
            )
            raise

    def _handle(
        self,
        step: QueryStep,
        visited: list[StepState],
        cancel: Optional[threading.Event],
    ) -> StepOutcome:
        self._enter(visited, StepState.AWAITING_DEPENDENCY, step)
        if not self.gate.is_ready(step.partner_shared_info.shared_dir, step.query_id, step.level):
            msg = f"partner {step.partner_shared_info.origin} has not published level {step.level - 1} of {step.query_id}"
            raise DependencyNotReady(msg)

        plan = read_expansion_plan(self.store, step.expand_config_uri)
        if step.level > plan.final_level:
            msg = f"expect request level <= final level {plan.final_level}, got {step.level}"
            raise ConfigError(msg)
        task = resolve_level_task(
            self.store,
            step,
            plan,
            shared_dir=self.shared_dir,
            work_dir=self.work_dir,
            key_params_uri=self.private_key_params_uri,
            runner=self.runner,
        )

        self._enter(visited, StepState.COMPUTING, step)
        staging = task.output_uri + STAGING_SUFFIX
        try:
            self.worker.run(task.with_output(staging), cancel)
            if cancel is not None and cancel.is_set():
                raise ComputationError(f"query {step.query_id} level {step.level} cancelled")
        except AggregationError:
            self.store.delete(staging)
            raise
        except Exception as exc:
            self.store.delete(staging)
            raise ComputationError(f"evaluation work failed: {exc}") from exc

        self._enter(visited, StepState.PUBLISHING, step)
        self.store.rename(staging, task.output_uri)

        if task.final:
            self._enter(visited, StepState.COMPLETED, step)
            return StepOutcome(StepState.COMPLETED, visited, task.output_uri)

        next_step = step.next_level()
        self.channel.publish(next_step.to_json(), message_id=next_step.message_id)
        self._enter(visited, StepState.REQUEUED, step)
        return StepOutcome(StepState.REQUEUED, visited, task.output_uri, next_step)
