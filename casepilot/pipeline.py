"""
Case Pipeline
Wires parsing, execution, resolution and generation around one checkpoint store
"""

import logging
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple, Union

from casepilot.alerting.slack_notifier import SlackNotifier
from casepilot.browser.session_driver import SessionDriver
from casepilot.codegen.code_generator import CodeGenerator, SourceArtifact
from casepilot.config import Settings
from casepilot.core.action_classifier import classify_case
from casepilot.core.execution_orchestrator import CaseRun, ExecutionOrchestrator
from casepilot.methods.method_catalog import MethodCatalog
from casepilot.methods.method_resolver import MethodResolver, ResolutionReport
from casepilot.testcases.case_parser import RawCaseDocument, load_case_file, parse
from casepilot.testcases.checkpoint_store import CheckpointStore
from casepilot.testcases.test_case_model import (
    ActionKind,
    CheckpointRecord,
    ExecutionTrace,
    TestCase,
)

logger = logging.getLogger(__name__)


class CasePipeline:
    """Facade over the pipeline components for one working directory"""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[CheckpointStore] = None,
        catalog: Optional[MethodCatalog] = None,
        notifier: Optional[SlackNotifier] = None,
        driver_factory: Optional[Callable[[], SessionDriver]] = None,
    ):
        self.settings = settings or Settings.from_env()
        self.store = store or CheckpointStore(self.settings.checkpoint_dir)
        self._catalog = catalog
        self.notifier = notifier or SlackNotifier(self.settings.slack_webhook_url)
        self.driver_factory = driver_factory or self._launch_browser
        self.resolver = MethodResolver()
        self.generator = CodeGenerator(pages_import=self.settings.pages_import)

    @property
    def catalog(self) -> MethodCatalog:
        if self._catalog is None:
            self._catalog = MethodCatalog.load(self.settings.catalog_path)
        return self._catalog

    def _launch_browser(self) -> SessionDriver:
        from casepilot.browser.playwright_session import PlaywrightSession
        return PlaywrightSession.launch(
            headless=self.settings.headless,
            ws_url=self.settings.browser_ws_url,
            default_timeout_ms=self.settings.action_timeout_ms,
        )

    def ingest(self, source: Union[str, Path, RawCaseDocument]) -> TestCase:
        """Parse a case file or document and pre-classify its steps"""
        looks_like_path = (
            isinstance(source, str)
            and "\n" not in source
            and not source.lstrip().startswith(("<", "{"))
        )
        if isinstance(source, Path) or looks_like_path:
            case = load_case_file(source)
        else:
            case = parse(source)
        unknown = classify_case(case)
        if unknown:
            logger.warning(f"Case {case.id}: steps {unknown} are Unknown and need a human-assigned kind")
        return case

    def execute(self, case: TestCase, overrides: Optional[Dict[int, ActionKind]] = None) -> CaseRun:
        """Run (or resume) a case in a fresh session"""
        driver = self.driver_factory()
        try:
            orchestrator = ExecutionOrchestrator(
                driver,
                self.store,
                commit_retries=self.settings.commit_retries,
                notifier=self.notifier,
            )
            return orchestrator.run(case, overrides)
        finally:
            driver.close()

    def status(self, case_id: str) -> Optional[CheckpointRecord]:
        return self.store.load(case_id)

    def resolve(self, case_id: str) -> ResolutionReport:
        """Resolve executed steps to catalog methods and checkpoint the result"""
        record = self._require(case_id)
        case = record.restore()
        report = self.resolver.resolve_case(case, self.catalog)
        self.store.commit(CheckpointRecord.capture(case, revision=record.revision))
        if report.gaps:
            self.notifier.send_new_method_alert(case_id, report.gaps)
        return report

    def generate(self, case_id: str, archive: bool = True) -> Tuple[SourceArtifact, Path]:
        """
        Generate and write the test source for a case, then archive its checkpoint

        Raises:
            IncompleteTraceError: steps not succeeded or not resolved
        """
        record = self._require(case_id)
        artifact = self.generator.generate(ExecutionTrace.from_record(record))
        path = artifact.write(self.settings.output_dir)
        if archive:
            self.store.archive(case_id)
        return artifact, path

    def _require(self, case_id: str) -> CheckpointRecord:
        record = self.store.load(case_id)
        if record is None:
            raise KeyError(f"No checkpoint for case {case_id}; run it first")
        return record
