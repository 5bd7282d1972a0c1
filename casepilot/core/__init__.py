"""
Core pipeline: action classification and execution orchestration
"""

from .action_classifier import ActionRequest, build_request, classify, classify_case, extract_expectations
from .execution_orchestrator import CaseRun, CaseState, ExecutionOrchestrator, run_cases

__all__ = [
    "ActionRequest",
    "CaseRun",
    "CaseState",
    "ExecutionOrchestrator",
    "build_request",
    "classify",
    "classify_case",
    "extract_expectations",
    "run_cases",
]
