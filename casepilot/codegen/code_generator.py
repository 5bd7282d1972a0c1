"""
Code Generator
Renders a Playwright Test file from a completed, fully resolved execution trace
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List

from casepilot.core.action_classifier import extract_expectations
from casepilot.errors import IncompleteTraceError
from casepilot.testcases.test_case_model import ActionKind, ExecutionTrace, Step

logger = logging.getLogger(__name__)

INDENT = "  "
MAX_LABEL = 80


@dataclass(frozen=True)
class SourceArtifact:
    """One generated test file"""
    case_id: str
    filename: str
    content: str

    def write(self, output_dir: str) -> Path:
        directory = Path(output_dir)
        directory.mkdir(parents=True, exist_ok=True)
        filepath = directory / self.filename
        filepath.write_text(self.content, encoding="utf-8")
        logger.info(f"Wrote {filepath}")
        return filepath


def ts_string(text: str) -> str:
    """Single-quoted TypeScript string literal"""
    escaped = text.replace("\\", "\\\\").replace("'", "\\'").replace("\r", "").replace("\n", "\\n")
    return f"'{escaped}'"


def to_slug(text: str) -> str:
    """'Login with valid credentials' -> 'login-with-valid-credentials'"""
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def to_variable(class_name: str) -> str:
    """'LoginPage' -> 'loginPage'"""
    return class_name[:1].lower() + class_name[1:]


def step_label(step: Step) -> str:
    first_line = step.description.splitlines()[0] if step.description else ""
    if len(first_line) > MAX_LABEL:
        first_line = first_line[:MAX_LABEL - 3].rstrip() + "..."
    return f"Step {step.index}: {first_line}"


class CodeGenerator:
    """Builds one test file per test case"""

    def __init__(self, pages_import: str = "../pages"):
        """
        Args:
            pages_import: Import path prefix of the page-object classes
        """
        self.pages_import = pages_import.rstrip("/")

    def generate(self, trace: ExecutionTrace) -> "SourceArtifact":
        """
        Generate the test source for a trace

        Raises:
            IncompleteTraceError: a step is not Succeeded or has no resolved method
        """
        blocking = trace.blocking_indices()
        if blocking or not trace.steps:
            logger.error(f"Case {trace.case_id}: steps {blocking} block code generation")
            raise IncompleteTraceError(trace.case_id, blocking)

        steps = sorted(trace.steps, key=lambda s: s.index)
        page_classes = sorted({s.resolved_method.page_class for s in steps})

        lines: List[str] = [f"// {trace.case_id}: {trace.name}"]
        if trace.objective:
            for objective_line in trace.objective.splitlines():
                lines.append(f"// {objective_line}")
        lines += [
            "// Generated from the recorded execution trace.",
            "import { test, expect } from '@playwright/test';",
        ]
        for class_name in page_classes:
            lines.append(f"import {{ {class_name} }} from {ts_string(f'{self.pages_import}/{class_name}')};")
        lines.append("")

        lines.append(f"test({ts_string(f'{trace.case_id}: {trace.name}')}, async ({{ page }}) => {{")
        for class_name in page_classes:
            lines.append(f"{INDENT}const {to_variable(class_name)} = new {class_name}(page);")
        if page_classes:
            lines.append("")

        for position, step in enumerate(steps):
            lines += self._render_step(step)
            if position < len(steps) - 1:
                lines.append("")
        lines += ["});", ""]

        content = "\n".join(lines)
        filename = f"{to_slug(trace.case_id)}-{to_slug(trace.name) or 'case'}.spec.ts"
        logger.info(f"Generated {filename} for case {trace.case_id} ({len(steps)} steps)")
        return SourceArtifact(case_id=trace.case_id, filename=filename, content=content)

    def _render_step(self, step: Step) -> List[str]:
        method = step.resolved_method
        body = INDENT * 2
        args = ", ".join(ts_string(a) for a in method.arguments)
        lines = [
            f"{INDENT}await test.step({ts_string(step_label(step))}, async () => {{",
            f"{body}await {to_variable(method.page_class)}.{method.method_name}({args});",
        ]
        for assertion in self._assertions(step):
            lines.append(f"{body}{assertion}")
        lines.append(f"{INDENT}}});")
        return lines

    def _assertions(self, step: Step) -> List[str]:
        """Assertions implied by the expected result"""
        expectations = extract_expectations(step.expected_result, infer=step.action_kind == ActionKind.ASSERT)
        seen: Dict[str, None] = {}
        for fragment in expectations:
            seen.setdefault(fragment, None)
        assertions = [f"await expect(page.getByText({ts_string(f)})).toBeVisible();" for f in seen]
        if not assertions and step.expected_result:
            assertions.append(f"// Expected: {' '.join(step.expected_result.split())}")
        return assertions
