"""
Method Resolver
Matches executed steps against the method catalog and reports the steps that
need a new reusable method. Never writes to the catalog.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union
from urllib.parse import urlparse

from casepilot.core.action_classifier import build_request
from casepilot.testcases.test_case_model import (
    ActionKind,
    DiscoveredElement,
    ResolvedMethod,
    Step,
    StepStatus,
    TestCase,
)
from .method_catalog import MatchPattern, MethodCatalog, MethodCatalogEntry

logger = logging.getLogger(__name__)

VERBS = {
    ActionKind.NAVIGATE: "open",
    ActionKind.CLICK: "click",
    ActionKind.FILL: "fill",
    ActionKind.SELECT: "select",
    ActionKind.CHECK: "check",
    ActionKind.UPLOAD: "upload",
    ActionKind.ASSERT: "expect",
    ActionKind.UNKNOWN: "perform",
}


@dataclass
class NeedsNewMethod:
    """A step no catalog entry fully matches; blocks code generation until added"""
    step_index: int
    action_kind: ActionKind
    proposed_signature: str
    proposed_method: str
    locator: Optional[DiscoveredElement] = None
    partial_matches: List[str] = field(default_factory=list)

    def draft_entry(self, page_class: str = "Page") -> MethodCatalogEntry:
        """A catalog entry a human can review and add"""
        pattern = MatchPattern(action=self.action_kind)
        if self.locator is not None:
            pattern.locator = re.escape(f"{self.locator.locator_strategy}={self.locator.locator_value}")
        return MethodCatalogEntry(
            signature=self.proposed_signature,
            abstraction_reference=f"{page_class}.{self.proposed_method}",
            match_patterns=[pattern],
        )


@dataclass
class ResolutionReport:
    """Outcome of resolving every succeeded step of a case"""
    case_id: str
    resolved: Dict[int, ResolvedMethod] = field(default_factory=dict)
    gaps: List[NeedsNewMethod] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)   # Steps not succeeded

    @property
    def is_complete(self) -> bool:
        return not self.gaps and not self.skipped


def _search(pattern: Optional[str], text: str) -> bool:
    return pattern is None or re.search(pattern, text, re.IGNORECASE) is not None


def _camel(words: List[str]) -> str:
    parts = [w for w in words if w]
    if not parts:
        return ""
    return parts[0].lower() + "".join(p[:1].upper() + p[1:].lower() for p in parts[1:])


def call_arguments(step: Step) -> List[str]:
    """Arguments a resolved method is called with for this step"""
    request = build_request(step)
    if step.action_kind == ActionKind.NAVIGATE:
        return [request.target]
    if step.action_kind in (ActionKind.FILL, ActionKind.SELECT, ActionKind.UPLOAD):
        return [request.value]
    return []


class MethodResolver:
    """Resolves steps to catalog methods"""

    def _pattern_fit(self, pattern: MatchPattern, step: Step) -> Dict[str, bool]:
        locators = [f"{e.locator_strategy}={e.locator_value}" for e in step.discovered_elements]
        return {
            "action": pattern.action == step.action_kind,
            "description": _search(pattern.description, step.description),
            "test_data": _search(pattern.test_data, step.test_data),
            "locator": pattern.locator is None or any(_search(pattern.locator, loc) for loc in locators),
        }

    def propose(self, step: Step, partial_matches: Optional[List[str]] = None) -> NeedsNewMethod:
        """Derive a method proposal from the step description and its discovered locator"""
        request = build_request(step)
        locator = step.discovered_elements[0] if step.discovered_elements else None

        if step.action_kind == ActionKind.NAVIGATE:
            path = urlparse(request.target).path.strip("/")
            segment = path.split("/")[-1] if path else "home"
            words = [VERBS[step.action_kind]] + re.findall(r"[A-Za-z0-9]+", segment) + ["page"]
        else:
            words = [VERBS[step.action_kind]] + re.findall(r"[A-Za-z0-9]+", request.target)[:4]
            if request.role_hint and request.role_hint not in ("textbox", "text"):
                words.append(request.role_hint)
        method = _camel(words) or VERBS[step.action_kind]

        signature = step.description
        if locator is not None:
            signature += f" [{locator.describe()}]"

        return NeedsNewMethod(
            step_index=step.index,
            action_kind=step.action_kind,
            proposed_signature=signature,
            proposed_method=method,
            locator=locator,
            partial_matches=list(partial_matches or []),
        )

    def resolve(self, step: Step, catalog: MethodCatalog) -> Union[ResolvedMethod, NeedsNewMethod]:
        """
        Resolve one step

        An entry is reused when one of its patterns fully matches the step
        (action kind, description, test data and discovered locator). Entries
        matching only in part are listed on the NeedsNewMethod result.

        Returns:
            ResolvedMethod for the first fully matching entry in catalog order,
            otherwise NeedsNewMethod
        """
        partial = []
        for entry in catalog:
            for pattern in entry.match_patterns:
                fit = self._pattern_fit(pattern, step)
                if all(fit.values()):
                    logger.info(f"Step {step.index} resolved to {entry.abstraction_reference}")
                    return ResolvedMethod(
                        abstraction_reference=entry.abstraction_reference,
                        signature=entry.signature,
                        arguments=call_arguments(step),
                    )
                specified = [k for k in ("description", "test_data", "locator") if getattr(pattern, k) is not None]
                if fit["action"] or any(fit[k] for k in specified):
                    if entry.abstraction_reference not in partial:
                        partial.append(entry.abstraction_reference)

        proposal = self.propose(step, partial)
        logger.warning(f"Step {step.index} needs a new method: {proposal.proposed_method} ({proposal.proposed_signature})")
        return proposal

    def resolve_case(self, case: TestCase, catalog: MethodCatalog) -> ResolutionReport:
        """
        Resolve every succeeded step and record the result on the step

        Steps that did not succeed are listed as skipped; gap steps keep
        resolved_method None.
        """
        report = ResolutionReport(case_id=case.id)
        for step in case.steps:
            if step.status != StepStatus.SUCCEEDED:
                report.skipped.append(step.index)
                continue
            outcome = self.resolve(step, catalog)
            if isinstance(outcome, ResolvedMethod):
                step.resolved_method = outcome
                report.resolved[step.index] = outcome
            else:
                step.resolved_method = None
                report.gaps.append(outcome)

        logger.info(
            f"Case {case.id}: {len(report.resolved)} resolved, {len(report.gaps)} need new methods, "
            f"{len(report.skipped)} not executed"
        )
        return report
