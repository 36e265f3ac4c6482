"""Incremental distributed point functions (the share engine).

- ``generate_keys``: split a point function alpha -> beta into two shares.
- ``create_evaluation_context``: start evaluating one share.
- ``evaluate_level``: produce one hierarchy level's shares at a prefix set.
"""

from .context import EvaluationContext, NodeState, create_evaluation_context, evaluate_level
from .keys import CorrectionWord, KeyShare, generate_keys
from .params import LevelParameters, Parameters

__all__ = [
    "CorrectionWord",
    "EvaluationContext",
    "KeyShare",
    "LevelParameters",
    "NodeState",
    "Parameters",
    "create_evaluation_context",
    "evaluate_level",
    "generate_keys",
]
