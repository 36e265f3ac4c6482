"""Dependency gate: the only synchronization signal between helpers."""

from __future__ import annotations

import logging

from dpf_histograms.query import partial_result_uri

logger = logging.getLogger(__name__)


class DependencyGate:
    """Check whether the partner published its result for the previous level."""

    def __init__(self, store) -> None:
        self.store = store

    def is_ready(self, partner_shared_dir: str, query_id: str, level: int) -> bool:
        """Single existence read of the partner's level ``level - 1`` result.

        Level 0 has no dependency. The check never retries.
        """
        if level == 0:
            return True
        uri = partial_result_uri(partner_shared_dir, query_id, level - 1)
        ready = self.store.exists(uri)
        logger.debug("dependency %s ready=%s", uri, ready)
        return ready
