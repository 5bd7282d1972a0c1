"""CLI for running, resolving and generating test cases.

Usage:
    # Execute (or resume) a case against a live browser
    casepilot run cases/login.xml

    # Assign a kind to a step the classifier could not place
    casepilot run cases/login.xml --kind 4=click

    # Show checkpoint progress
    casepilot status TC-101

    # Resolve executed steps against the method catalog
    casepilot resolve TC-101

    # Write the Playwright test file once every step is resolved
    casepilot generate TC-101
"""

import argparse
import json
import logging
import sys
from typing import Dict, List, Optional

from casepilot.config import Settings
from casepilot.core.execution_orchestrator import CaseState
from casepilot.errors import CasePilotError, ClassificationAmbiguousError, IncompleteTraceError, MalformedCaseError
from casepilot.pipeline import CasePipeline
from casepilot.testcases.checkpoint_store import STATUS_MARKERS
from casepilot.testcases.test_case_model import ActionKind

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_HALTED = 1
EXIT_BLOCKED = 2
EXIT_INCOMPLETE = 3


def parse_overrides(values: Optional[List[str]]) -> Dict[int, ActionKind]:
    """['4=click', '7=Assert'] -> {4: CLICK, 7: ASSERT}"""
    overrides = {}
    for value in values or []:
        index, sep, kind = value.partition("=")
        if not sep:
            raise argparse.ArgumentTypeError(f"--kind expects INDEX=KIND, got {value!r}")
        try:
            overrides[int(index)] = ActionKind.parse(kind)
        except ValueError as e:
            raise argparse.ArgumentTypeError(str(e))
    return overrides


def cmd_run(pipeline: CasePipeline, args) -> int:
    case = pipeline.ingest(args.case_file)
    run = pipeline.execute(case, parse_overrides(args.kind))
    print(f"{case.id}: {run.state.value} at revision {run.revision}")
    if run.halted_at is not None and run.record:
        step = run.record.case.step(run.halted_at)
        print(f"  step {step.index} failed: {step.observed_behavior}")
    return EXIT_OK if run.state == CaseState.COMPLETED else EXIT_HALTED


def cmd_status(pipeline: CasePipeline, args) -> int:
    record = pipeline.status(args.case_id)
    if record is None:
        print(f"{args.case_id}: no checkpoint")
        return EXIT_BLOCKED
    print(f"{record.case_id} - {record.case.name} (revision {record.revision})")
    for step in record.case.steps:
        method = f" -> {step.resolved_method.abstraction_reference}" if step.resolved_method else ""
        print(f"  {STATUS_MARKERS[step.status]} {step.index}. [{step.action_kind.value}] {step.description}{method}")
    return EXIT_OK


def cmd_resolve(pipeline: CasePipeline, args) -> int:
    report = pipeline.resolve(args.case_id)
    for index, method in sorted(report.resolved.items()):
        print(f"  {index}: {method.abstraction_reference}")
    for gap in report.gaps:
        print(f"  {gap.step_index}: NEEDS NEW METHOD {gap.proposed_method} - {gap.proposed_signature}")
        if gap.partial_matches:
            print(f"     partial matches: {', '.join(gap.partial_matches)}")
    if report.gaps and args.draft_page:
        drafts = [g.draft_entry(args.draft_page).to_dict() for g in report.gaps]
        print(json.dumps({"entries": drafts}, indent=2))
    return EXIT_OK if report.is_complete else EXIT_INCOMPLETE


def cmd_generate(pipeline: CasePipeline, args) -> int:
    _, path = pipeline.generate(args.case_id, archive=not args.no_archive)
    print(f"Wrote {path}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="casepilot",
        description="Execute test-case descriptions in a browser and generate test code",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Execute or resume a case")
    run.add_argument("case_file", help="Case document (.xml, .json or numbered scenario text)")
    run.add_argument("--kind", action="append", metavar="INDEX=KIND",
                     help="Assign an action kind to a step (repeatable)")
    run.add_argument("--headed", action="store_true", help="Show the browser window")
    run.set_defaults(func=cmd_run)

    status = sub.add_parser("status", help="Show checkpoint progress")
    status.add_argument("case_id")
    status.set_defaults(func=cmd_status)

    resolve = sub.add_parser("resolve", help="Resolve executed steps to catalog methods")
    resolve.add_argument("case_id")
    resolve.add_argument("--draft-page", metavar="CLASS",
                         help="Print draft catalog entries for missing methods on this page class")
    resolve.set_defaults(func=cmd_resolve)

    generate = sub.add_parser("generate", help="Generate the test source")
    generate.add_argument("case_id")
    generate.add_argument("--no-archive", action="store_true", help="Keep the checkpoint live")
    generate.set_defaults(func=cmd_generate)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if getattr(args, "headed", False):
        settings.headless = False

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    pipeline = CasePipeline(settings)
    try:
        return args.func(pipeline, args)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except (MalformedCaseError, ClassificationAmbiguousError) as e:
        logger.error(str(e))
        return EXIT_BLOCKED
    except IncompleteTraceError as e:
        logger.error(str(e))
        return EXIT_INCOMPLETE
    except (CasePilotError, KeyError) as e:
        logger.error(str(e))
        return EXIT_BLOCKED


if __name__ == "__main__":
    sys.exit(main())
