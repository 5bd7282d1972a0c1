"""
Test Case Data Models
Defines TestCase, Step and CheckpointRecord dataclasses for the execution pipeline
"""

import copy
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, List, Tuple

from casepilot.errors import StepTransitionError


class ActionKind(str, Enum):
    """Closed set of executable operation categories"""
    NAVIGATE = "Navigate"
    CLICK = "Click"
    FILL = "Fill"
    SELECT = "Select"
    CHECK = "Check"
    UPLOAD = "Upload"
    ASSERT = "Assert"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value: str) -> "ActionKind":
        """Case-insensitive lookup by value ("click", "Click", "CLICK")"""
        for kind in cls:
            if kind.value.lower() == value.strip().lower():
                return kind
        raise ValueError(f"Unknown action kind: {value!r}")


class StepStatus(str, Enum):
    """Execution status of a single step"""
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"


# Allowed forward moves
_TRANSITIONS = {
    StepStatus.PENDING: (StepStatus.IN_PROGRESS,),
    StepStatus.IN_PROGRESS: (StepStatus.SUCCEEDED, StepStatus.FAILED),
    StepStatus.SUCCEEDED: (),
    StepStatus.FAILED: (),
}


@dataclass
class DiscoveredElement:
    """A concrete interaction target resolved by the session driver"""
    locator_strategy: str         # role, label, placeholder, text, css, url
    locator_value: str
    element_role: str = ""        # button, link, textbox, document...

    def describe(self) -> str:
        role = f" ({self.element_role})" if self.element_role else ""
        return f"{self.locator_strategy}={self.locator_value}{role}"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "DiscoveredElement":
        return cls(
            locator_strategy=data["locator_strategy"],
            locator_value=data["locator_value"],
            element_role=data.get("element_role", ""),
        )


@dataclass
class ResolvedMethod:
    """Reference into the method catalog, with the call arguments for one step"""
    abstraction_reference: str    # PageClass.methodName
    signature: str
    arguments: List[str] = field(default_factory=list)

    @property
    def page_class(self) -> str:
        return self.abstraction_reference.rsplit(".", 1)[0] if "." in self.abstraction_reference else ""

    @property
    def method_name(self) -> str:
        return self.abstraction_reference.rsplit(".", 1)[-1]

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ResolvedMethod":
        return cls(
            abstraction_reference=data["abstraction_reference"],
            signature=data.get("signature", ""),
            arguments=list(data.get("arguments", [])),
        )


@dataclass
class Step:
    """
    One unit of test-case behavior plus its mutable execution state
    """
    index: int
    description: str
    expected_result: str = ""
    test_data: str = ""
    action_kind: ActionKind = ActionKind.UNKNOWN
    status: StepStatus = StepStatus.PENDING
    discovered_elements: List[DiscoveredElement] = field(default_factory=list)
    observed_behavior: str = ""
    resolved_method: Optional[ResolvedMethod] = None

    def advance(self, new_status: StepStatus) -> None:
        """
        Move the step forward: Pending -> InProgress -> Succeeded/Failed

        Raises:
            StepTransitionError: for any other move
        """
        if new_status not in _TRANSITIONS[self.status]:
            raise StepTransitionError(
                f"Step {self.index}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def reopen(self) -> None:
        """
        Put a failed step back to Pending for a new, human-initiated run.
        Clears the state recorded by the failed attempt.
        """
        if self.status != StepStatus.FAILED:
            raise StepTransitionError(
                f"Step {self.index}: only a Failed step can be reopened (is {self.status.value})"
            )
        self.status = StepStatus.PENDING
        self.discovered_elements = []
        self.observed_behavior = ""
        self.resolved_method = None

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "description": self.description,
            "expected_result": self.expected_result,
            "test_data": self.test_data,
            "action_kind": self.action_kind.value,
            "status": self.status.value,
            "discovered_elements": [e.to_dict() for e in self.discovered_elements],
            "observed_behavior": self.observed_behavior,
            "resolved_method": self.resolved_method.to_dict() if self.resolved_method else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Step":
        resolved = data.get("resolved_method")
        return cls(
            index=int(data["index"]),
            description=data["description"],
            expected_result=data.get("expected_result", ""),
            test_data=data.get("test_data", ""),
            action_kind=ActionKind(data.get("action_kind", ActionKind.UNKNOWN.value)),
            status=StepStatus(data.get("status", StepStatus.PENDING.value)),
            discovered_elements=[DiscoveredElement.from_dict(e) for e in data.get("discovered_elements", [])],
            observed_behavior=data.get("observed_behavior", ""),
            resolved_method=ResolvedMethod.from_dict(resolved) if resolved else None,
        )


@dataclass
class TestCase:
    """
    A parsed test case: identity, objective, preconditions and ordered steps
    """
    __test__ = False  # keep pytest from collecting this class

    id: str
    name: str
    objective: str = ""
    preconditions: str = ""
    steps: List[Step] = field(default_factory=list)

    def step(self, index: int) -> Step:
        for step in self.steps:
            if step.index == index:
                return step
        raise KeyError(f"Case {self.id} has no step {index}")

    def next_pending_step(self) -> Optional[Step]:
        """First step in index order that has not started"""
        for step in self.steps:
            if step.status == StepStatus.PENDING:
                return step
        return None

    def first_failed_step(self) -> Optional[Step]:
        for step in self.steps:
            if step.status == StepStatus.FAILED:
                return step
        return None

    def is_complete(self) -> bool:
        return bool(self.steps) and all(s.status == StepStatus.SUCCEEDED for s in self.steps)

    def is_halted(self) -> bool:
        return self.first_failed_step() is not None

    def copy(self) -> "TestCase":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "objective": self.objective,
            "preconditions": self.preconditions,
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TestCase":
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            objective=data.get("objective", ""),
            preconditions=data.get("preconditions", ""),
            steps=[Step.from_dict(s) for s in data.get("steps", [])],
        )


@dataclass(frozen=True)
class CheckpointRecord:
    """
    Durable state of one test case: a frozen copy of the case and its revision.
    Revision 0 means nothing has been committed yet.
    """
    case: TestCase
    revision: int = 0
    updated_at: Optional[str] = None

    @property
    def case_id(self) -> str:
        return self.case.id

    @classmethod
    def capture(cls, case: TestCase, revision: int = 0) -> "CheckpointRecord":
        """Snapshot a live case; later mutations of the case do not leak in"""
        return cls(case=case.copy(), revision=revision)

    def restore(self) -> TestCase:
        """A fresh, mutable copy of the recorded case"""
        return self.case.copy()

    def next_revision(self) -> "CheckpointRecord":
        return CheckpointRecord(
            case=self.case,
            revision=self.revision + 1,
            updated_at=datetime.now().isoformat(timespec="seconds"),
        )

    def to_dict(self) -> dict:
        return {
            "case_id": self.case.id,
            "revision": self.revision,
            "updated_at": self.updated_at,
            "case": self.case.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CheckpointRecord":
        return cls(
            case=TestCase.from_dict(data["case"]),
            revision=int(data["revision"]),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class ExecutionTrace:
    """
    Ordered steps of a case with resolution results; input of code generation
    """
    case_id: str
    name: str
    objective: str
    steps: Tuple[Step, ...]

    @classmethod
    def from_case(cls, case: TestCase) -> "ExecutionTrace":
        snapshot = case.copy()
        return cls(
            case_id=snapshot.id,
            name=snapshot.name,
            objective=snapshot.objective,
            steps=tuple(sorted(snapshot.steps, key=lambda s: s.index)),
        )

    @classmethod
    def from_record(cls, record: CheckpointRecord) -> "ExecutionTrace":
        return cls.from_case(record.case)

    def blocking_indices(self) -> List[int]:
        """Steps that are not succeeded or have no resolved method"""
        return [
            s.index for s in self.steps
            if s.status != StepStatus.SUCCEEDED or s.resolved_method is None
        ]
