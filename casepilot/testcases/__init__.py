"""
Test Cases module: data model, parsing and checkpoint storage
"""

from .test_case_model import (
    ActionKind,
    CheckpointRecord,
    DiscoveredElement,
    ExecutionTrace,
    ResolvedMethod,
    Step,
    StepStatus,
    TestCase,
)
from .case_parser import parse, parse_many, load_case_file
from .checkpoint_store import CheckpointStore

__all__ = [
    "ActionKind",
    "CheckpointRecord",
    "CheckpointStore",
    "DiscoveredElement",
    "ExecutionTrace",
    "ResolvedMethod",
    "Step",
    "StepStatus",
    "TestCase",
    "load_case_file",
    "parse",
    "parse_many",
]
