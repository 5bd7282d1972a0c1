"""
Execution Orchestrator
Drives one test case, one step at a time, through an interactive session,
recording discovered targets and committing a checkpoint after every step
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from casepilot.browser.session_driver import ActionResult, SessionDriver
from casepilot.errors import (
    ActionFailure,
    CasePilotError,
    ClassificationAmbiguousError,
    StoreWriteError,
)
from casepilot.testcases.checkpoint_store import CheckpointStore
from casepilot.testcases.test_case_model import (
    ActionKind,
    CheckpointRecord,
    Step,
    StepStatus,
    TestCase,
)
from .action_classifier import ActionRequest, build_request, extract_expectations, require_classified

logger = logging.getLogger(__name__)


class CaseState(Enum):
    """States of a case run"""
    INITIALIZED = "initialized"
    RUNNING = "running"
    COMPLETED = "completed"
    HALTED = "halted"
    ABORTED = "aborted"
    BLOCKED = "blocked"
    ERROR = "error"


@dataclass
class CaseRun:
    """Tracks a single run of one test case"""
    case_id: str
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    state: CaseState = CaseState.INITIALIZED
    record: Optional[CheckpointRecord] = None
    dispatched: List[int] = field(default_factory=list)   # Step indices sent to the driver
    halted_at: Optional[int] = None
    error: Optional[str] = None
    state_transitions: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def revision(self) -> int:
        return self.record.revision if self.record else 0


class ExecutionOrchestrator:
    """Step-by-step state machine for one case against one exclusive session"""

    def __init__(
        self,
        driver: SessionDriver,
        store: CheckpointStore,
        commit_retries: int = 3,
        retry_delay: float = 0.5,
        notifier=None,
    ):
        """
        Args:
            driver: Session the actions are dispatched to (exclusive to this case)
            store: Checkpoint store, the single source of truth for resuming
            commit_retries: Extra commit attempts after a StoreWriteError
            retry_delay: Seconds between commit attempts
            notifier: Optional alert sink (SlackNotifier) for halted/blocked cases
        """
        self.driver = driver
        self.store = store
        self.commit_retries = commit_retries
        self.retry_delay = retry_delay
        self.notifier = notifier
        self._abort = threading.Event()

    def abort(self) -> None:
        """
        Stop before the next step; an in-flight step is allowed to finish

        The request applies to the current run only. The next call to run() clears it.
        """
        logger.info("Abort requested")
        self._abort.set()

    def _transition_state(self, run: CaseRun, new_state: CaseState, reason: str = "") -> None:
        old_state = run.state
        run.state = new_state
        run.state_transitions.append({
            "from": old_state.value,
            "to": new_state.value,
            "timestamp": datetime.now(),
            "revision": run.revision,
            "reason": reason,
        })
        logger.info(f"State: {old_state.value} → {new_state.value} (case {run.case_id}, revision {run.revision})")
        if reason:
            logger.info(f"Reason: {reason}")

    # ==========================================
    # Run
    # ==========================================

    def run(self, case: TestCase, overrides: Optional[Dict[int, ActionKind]] = None) -> CaseRun:
        """
        Run a case to completion, halt or abort, resuming from its checkpoint

        Args:
            case: Parsed case; ignored in favour of the checkpoint when one exists
            overrides: Human-assigned action kinds by step index

        Returns:
            CaseRun with the final state and last committed record

        Raises:
            ClassificationAmbiguousError: a step to execute is still Unknown
            StoreWriteError: a commit kept failing after all retries
        """
        self._abort.clear()
        run = CaseRun(case_id=case.id)
        base = self.store.load(case.id)
        if base is not None:
            live = base.restore()
            logger.info(f"Resuming case {case.id} from revision {base.revision}")
        else:
            live = case.copy()
            base = CheckpointRecord.capture(live, revision=0)
            logger.info(f"Starting case {case.id} fresh ({len(live.steps)} steps)")
        run.record = base

        if live.is_complete():
            self._transition_state(run, CaseState.COMPLETED, "All steps already succeeded")
            run.end_time = datetime.now()
            return run

        failed = live.first_failed_step()
        if failed is not None:
            logger.info(f"Re-opening failed step {failed.index} for a new run")
            failed.reopen()

        try:
            require_classified(live, overrides)
        except ClassificationAmbiguousError as e:
            self._transition_state(run, CaseState.BLOCKED, str(e))
            run.error = str(e)
            if self.notifier:
                self.notifier.send_blocked_alert(live, e.step_indices)
            raise

        self._transition_state(run, CaseState.RUNNING, "Dispatching steps")

        while True:
            if self._abort.is_set():
                self._transition_state(run, CaseState.ABORTED, "Aborted by operator between steps")
                break

            step = live.next_pending_step()
            if step is None:
                self._transition_state(run, CaseState.COMPLETED, "Last step succeeded")
                break

            self._execute_step(run, step)
            run.record = self._commit(live, run.record)

            if step.status == StepStatus.FAILED:
                run.halted_at = step.index
                self._transition_state(run, CaseState.HALTED, step.observed_behavior)
                if self.notifier:
                    self.notifier.send_halt_alert(live, step)
                break

        run.end_time = datetime.now()
        duration = (run.end_time - run.start_time).total_seconds()
        logger.info(f"Case {case.id} finished: {run.state.value} at revision {run.revision} in {duration:.1f}s")
        return run

    # ==========================================
    # Step execution
    # ==========================================

    def _execute_step(self, run: CaseRun, step: Step) -> None:
        """Pending -> InProgress -> Succeeded/Failed for one step"""
        step.advance(StepStatus.IN_PROGRESS)
        logger.info(f"--- Step {step.index} ({step.action_kind.value}): {step.description} ---")

        request = build_request(step)
        run.dispatched.append(step.index)
        try:
            locators, observed = self._perform(step, request)
        except ActionFailure as e:
            step.discovered_elements = []
            step.observed_behavior = str(e)
            step.advance(StepStatus.FAILED)
            logger.error(f"Step {step.index} failed: {e.reason}")
            return

        step.discovered_elements = locators
        step.observed_behavior = observed
        step.advance(StepStatus.SUCCEEDED)
        logger.info(f"Step {step.index} succeeded: {', '.join(e.describe() for e in locators)}")

    def _perform(self, step: Step, request: ActionRequest):
        """
        Dispatch a request and verify its outcome

        Returns:
            (discovered elements, observed behavior)

        Raises:
            ActionFailure: driver error, driver exception (including
                timeouts), no discovered target, or unmet expectation
        """
        if request.kind == ActionKind.ASSERT:
            return self._confirm(step)

        try:
            result = self._dispatch(request)
        except Exception as e:
            raise ActionFailure(step.index, f"{type(e).__name__}: {e}") from e

        if not result.success:
            raise ActionFailure(step.index, result.error or "driver reported failure")
        if not result.locators:
            raise ActionFailure(step.index, f"no interaction target discovered for {request.target!r}")

        observed = result.message or f"{request.kind.value} {request.target} completed"
        expectations = extract_expectations(step.expected_result)
        if expectations:
            snapshot = self._snapshot(step)
            missing = [f for f in expectations if not snapshot.contains(f)]
            if missing:
                raise ActionFailure(step.index, f"expected {missing} not found on {snapshot.url}")
            observed += "; confirmed " + ", ".join(repr(f) for f in expectations)
        return result.locators, observed

    def _confirm(self, step: Step):
        """Assert steps: confirm each expectation is present instead of acting"""
        expectations = extract_expectations(step.expected_result or step.description, infer=True)
        if not expectations:
            raise ActionFailure(step.index, "nothing to confirm")

        snapshot = self._snapshot(step)
        locators = []
        for fragment in expectations:
            element = snapshot.find(fragment)
            if element is None:
                raise ActionFailure(step.index, f"expected {fragment!r} not found on {snapshot.url}")
            locators.append(element)
        return locators, "confirmed " + ", ".join(repr(f) for f in expectations) + f" on {snapshot.url}"

    def _snapshot(self, step: Step):
        try:
            return self.driver.snapshot()
        except Exception as e:
            raise ActionFailure(step.index, f"snapshot failed: {type(e).__name__}: {e}") from e

    def _dispatch(self, request: ActionRequest) -> ActionResult:
        kind = request.kind
        if kind == ActionKind.NAVIGATE:
            if not request.target:
                return ActionResult.failed("no URL to navigate to")
            return self.driver.navigate(request.target)
        if kind == ActionKind.CLICK:
            return self.driver.click(request.target, request.role_hint)
        if kind == ActionKind.FILL:
            return self.driver.fill(request.target, request.value, request.role_hint)
        if kind == ActionKind.SELECT:
            return self.driver.select(request.target, request.value, request.role_hint)
        if kind == ActionKind.CHECK:
            return self.driver.check(request.target, request.role_hint)
        if kind == ActionKind.UPLOAD:
            return self.driver.upload(request.target, request.value, request.role_hint)
        return ActionResult.failed(f"cannot dispatch {kind.value}")

    # ==========================================
    # Checkpointing
    # ==========================================

    def _commit(self, live: TestCase, base: CheckpointRecord) -> CheckpointRecord:
        """Commit the live state on top of base, retrying the commit (never the action)"""
        record = CheckpointRecord.capture(live, revision=base.revision)
        attempt = 0
        while True:
            try:
                return self.store.commit(record)
            except StoreWriteError as e:
                attempt += 1
                if attempt > self.commit_retries:
                    logger.error(f"Giving up on checkpoint commit for {live.id} after {attempt} attempts")
                    raise
                logger.warning(f"Checkpoint commit failed ({attempt}/{self.commit_retries}), retrying: {e.reason}")
                time.sleep(self.retry_delay)


def _failed_run(case: TestCase, store: CheckpointStore, state: CaseState, error: str) -> CaseRun:
    """CaseRun for a case that never reached a terminal step, carrying its last checkpoint if readable"""
    try:
        record = store.load(case.id)
    except CasePilotError as e:
        logger.warning(f"Checkpoint for {case.id} unreadable: {e}")
        record = None
    return CaseRun(case_id=case.id, state=state, record=record, end_time=datetime.now(), error=error)


def run_cases(
    jobs: Iterable[Tuple[TestCase, Optional[Dict[int, ActionKind]]]],
    driver_factory: Callable[[], SessionDriver],
    store: CheckpointStore,
    max_workers: int = 4,
    **orchestrator_kwargs,
) -> Dict[str, CaseRun]:
    """
    Run independent cases concurrently, each with its own session

    A blocked, halted or crashed case does not affect its siblings. Cases
    that raise anything else come back in the ERROR state.

    Args:
        jobs: (case, overrides) pairs
        driver_factory: Creates one fresh session per case
        store: Shared checkpoint store (records are per case)
        max_workers: Thread pool size

    Returns:
        Dict mapping case id to its CaseRun
    """
    def _run_one(case: TestCase, overrides: Optional[Dict[int, ActionKind]]) -> CaseRun:
        driver = None
        try:
            driver = driver_factory()
            return ExecutionOrchestrator(driver, store, **orchestrator_kwargs).run(case, overrides)
        except CasePilotError as e:
            logger.error(f"Case {case.id} did not run to a terminal step: {e}")
            return _failed_run(case, store, CaseState.BLOCKED, str(e))
        except Exception as e:
            logger.exception(f"Case {case.id} crashed: {type(e).__name__}: {e}")
            return _failed_run(case, store, CaseState.ERROR, f"{type(e).__name__}: {e}")
        finally:
            if driver is not None:
                driver.close()

    runs: Dict[str, CaseRun] = {}
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = {pool.submit(_run_one, case, overrides): case.id for case, overrides in jobs}
        for future, case_id in futures.items():
            runs[case_id] = future.result()
    return runs
