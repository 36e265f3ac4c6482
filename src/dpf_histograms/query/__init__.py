"""Query model: steps, expansion plans, shared locations and level inputs."""

from .messages import HelperSharedInfo, QueryStep, read_helper_shared_info
from .params import (
    LevelTask,
    contexts_uri,
    decode_prefixes,
    encode_prefixes,
    level_prefixes,
    prefixes_uri,
    resolve_level_task,
)
from .plan import ExpansionPlan, read_expansion_plan
from .results import (
    PartialResult,
    combine_partial_results,
    extend_prefixes,
    join_uri,
    partial_result_uri,
    select_heavy_prefixes,
)

__all__ = [
    "ExpansionPlan",
    "HelperSharedInfo",
    "LevelTask",
    "PartialResult",
    "QueryStep",
    "combine_partial_results",
    "contexts_uri",
    "decode_prefixes",
    "encode_prefixes",
    "extend_prefixes",
    "join_uri",
    "level_prefixes",
    "partial_result_uri",
    "prefixes_uri",
    "read_expansion_plan",
    "read_helper_shared_info",
    "resolve_level_task",
    "select_heavy_prefixes",
]
