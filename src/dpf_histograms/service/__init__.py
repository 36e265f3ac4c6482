"""Helper service: channel consumption, dependency gating and level orchestration."""

from .channel import FileChannel, InMemoryChannel, Message, RequestChannel, RetryPolicy, consume
from .gate import DependencyGate
from .helper import HelperService
from .orchestrator import LevelOrchestrator, StepOutcome, StepState
from .shared_info import make_shared_info_handler, serve_shared_info
from .storage import LocalFileStore, ObjectStore

__all__ = [
    "DependencyGate",
    "FileChannel",
    "HelperService",
    "InMemoryChannel",
    "LevelOrchestrator",
    "LocalFileStore",
    "Message",
    "ObjectStore",
    "RequestChannel",
    "RetryPolicy",
    "StepOutcome",
    "StepState",
    "consume",
    "make_shared_info_handler",
    "serve_shared_info",
]
