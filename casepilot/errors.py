"""
Error taxonomy for the ingestion, execution and generation pipeline
"""

from typing import Iterable, List


class CasePilotError(Exception):
    """Base class for all pipeline errors"""


class MalformedCaseError(CasePilotError):
    """The input document cannot be turned into an ordered step list"""


class ClassificationAmbiguousError(CasePilotError):
    """One or more steps classified as Unknown and need a human decision"""

    def __init__(self, case_id: str, step_indices: Iterable[int]):
        self.case_id = case_id
        self.step_indices: List[int] = sorted(step_indices)
        super().__init__(
            f"Case {case_id}: steps {self.step_indices} could not be classified, "
            f"assign an action kind before execution"
        )


class ActionFailure(CasePilotError):
    """A dispatched action errored or its outcome diverged from the expected result"""

    def __init__(self, step_index: int, reason: str):
        self.step_index = step_index
        self.reason = reason
        super().__init__(f"Step {step_index} failed: {reason}")


class StoreWriteError(CasePilotError):
    """A checkpoint commit did not happen; the prior revision is still authoritative"""

    def __init__(self, case_id: str, reason: str):
        self.case_id = case_id
        self.reason = reason
        super().__init__(f"Checkpoint commit for {case_id} failed: {reason}")


class CheckpointMismatchError(CasePilotError):
    """The checkpoint file found for a case holds another case's record"""

    def __init__(self, case_id: str, stored_case_id: str):
        self.case_id = case_id
        self.stored_case_id = stored_case_id
        super().__init__(f"Checkpoint for {case_id} holds the record of case {stored_case_id}")


class IncompleteTraceError(CasePilotError):
    """Code generation refused because some steps are not succeeded and resolved"""

    def __init__(self, case_id: str, step_indices: Iterable[int]):
        self.case_id = case_id
        self.step_indices: List[int] = sorted(step_indices)
        super().__init__(
            f"Case {case_id}: cannot generate code, steps {self.step_indices} "
            f"are not succeeded with a resolved method"
        )


class StepTransitionError(CasePilotError):
    """A step status change that does not move forward"""


class CatalogError(CasePilotError):
    """The method catalog file is unreadable or invalid"""
