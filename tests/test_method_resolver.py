"""
Method Resolver and Method Catalog tests
"""

import json
import sys
import logging
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from casepilot.core.execution_orchestrator import ExecutionOrchestrator
from casepilot.errors import CatalogError
from casepilot.methods.method_catalog import MatchPattern, MethodCatalog, MethodCatalogEntry
from casepilot.methods.method_resolver import MethodResolver, NeedsNewMethod
from casepilot.testcases.case_parser import parse
from casepilot.testcases.checkpoint_store import CheckpointStore
from casepilot.testcases.test_case_model import ActionKind, ResolvedMethod
from fake_session import FakeSession
from sample_cases import CATALOG, five_step_document

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _executed_case(tmp_path, page_text="Dashboard - Issue status: Open"):
    store = CheckpointStore(str(tmp_path / "checkpoints"))
    ExecutionOrchestrator(FakeSession(page_text=page_text), store, retry_delay=0).run(parse(five_step_document()))
    return store.load("TC-200").restore()


def _catalog(tmp_path, drop=()):
    data = {"entries": [e for e in CATALOG["entries"] if e["abstraction_reference"] not in drop]}
    path = tmp_path / "method_catalog.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return MethodCatalog.load(str(path))


def test_every_step_resolves(tmp_path):
    logger.info("=== Testing method resolution ===")

    case = _executed_case(tmp_path)
    report = MethodResolver().resolve_case(case, _catalog(tmp_path))

    assert report.is_complete
    assert {i: m.abstraction_reference for i, m in report.resolved.items()} == {
        1: "LoginPage.open",
        2: "LoginPage.fillUsername",
        3: "LoginPage.signIn",
        4: "IssuePage.selectPriority",
        5: "IssuePage.expectStatus",
    }
    assert report.resolved[1].arguments == ["https://example.com/login"]
    assert report.resolved[2].arguments == ["admin"]
    assert report.resolved[3].arguments == []
    assert report.resolved[4].arguments == ["High"]
    assert case.step(2).resolved_method.signature == "Type the user name"
    logger.info("✅ All steps resolved")


def test_first_matching_entry_wins(tmp_path):
    case = _executed_case(tmp_path)
    catalog = _catalog(tmp_path)
    catalog.entries.insert(0, MethodCatalogEntry(
        signature="Any fill",
        abstraction_reference="FormPage.fillAny",
        match_patterns=[MatchPattern(action=ActionKind.FILL)],
    ))

    outcome = MethodResolver().resolve(case.step(2), catalog)
    assert isinstance(outcome, ResolvedMethod)
    assert outcome.abstraction_reference == "FormPage.fillAny"


def test_missing_method_is_reported(tmp_path):
    case = _executed_case(tmp_path)
    catalog = _catalog(tmp_path, drop=("LoginPage.signIn",))
    before = [e.to_dict() for e in catalog]

    report = MethodResolver().resolve_case(case, catalog)

    assert not report.is_complete
    assert sorted(report.resolved) == [1, 2, 4, 5]
    assert len(report.gaps) == 1
    gap = report.gaps[0]
    assert isinstance(gap, NeedsNewMethod)
    assert gap.step_index == 3
    assert gap.proposed_method == "clickSignInButton"
    assert gap.proposed_signature == 'Click the "Sign in" button [role=Sign in (button)]'
    assert gap.partial_matches == []
    assert case.step(3).resolved_method is None
    assert [e.to_dict() for e in catalog] == before


def test_partial_matches_listed(tmp_path):
    case = _executed_case(tmp_path)
    catalog = _catalog(tmp_path, drop=("LoginPage.signIn",))
    catalog.add_entry(MethodCatalogEntry(
        signature="Log out",
        abstraction_reference="LoginPage.logout",
        match_patterns=[MatchPattern(action=ActionKind.CLICK, locator="role=Log out")],
    ))

    gap = MethodResolver().resolve(case.step(3), catalog)
    assert isinstance(gap, NeedsNewMethod)
    assert gap.partial_matches == ["LoginPage.logout"]


def test_draft_entry_resolves_the_gap(tmp_path):
    case = _executed_case(tmp_path)
    catalog = _catalog(tmp_path, drop=("LoginPage.signIn",))
    resolver = MethodResolver()
    gap = resolver.resolve(case.step(3), catalog)

    draft = gap.draft_entry("LoginPage")
    assert draft.abstraction_reference == "LoginPage.clickSignInButton"
    catalog.add_entry(draft)

    outcome = resolver.resolve(case.step(3), catalog)
    assert isinstance(outcome, ResolvedMethod)
    assert outcome.abstraction_reference == "LoginPage.clickSignInButton"


def test_navigate_proposal_name(tmp_path):
    case = _executed_case(tmp_path)
    gap = MethodResolver().resolve(case.step(1), MethodCatalog())
    assert gap.proposed_method == "openLoginPage"


def test_unexecuted_steps_are_skipped(tmp_path):
    case = _executed_case(tmp_path, page_text="Welcome")
    report = MethodResolver().resolve_case(case, _catalog(tmp_path))

    assert sorted(report.resolved) == [1, 2]
    assert report.skipped == [3, 4, 5]
    assert not report.is_complete


def test_catalog_missing_file_is_empty(tmp_path):
    catalog = MethodCatalog.load(str(tmp_path / "absent.json"))
    assert len(catalog) == 0


def test_catalog_save_and_reload(tmp_path):
    catalog = _catalog(tmp_path)
    target = catalog.save(str(tmp_path / "copy.json"))

    reloaded = MethodCatalog.load(str(target))
    assert [e.to_dict() for e in reloaded] == CATALOG["entries"]


def test_catalog_rejects_duplicates_and_bad_entries(tmp_path):
    catalog = _catalog(tmp_path)
    with pytest.raises(CatalogError, match="already in the catalog"):
        catalog.add_entry(MethodCatalogEntry("again", "LoginPage.open"))

    with pytest.raises(CatalogError, match="PageClass.methodName"):
        MethodCatalogEntry.from_dict({"signature": "x", "abstraction_reference": "open"})

    with pytest.raises(CatalogError, match="Invalid description pattern"):
        MatchPattern.from_dict({"action": "Click", "description": "("})

    with pytest.raises(CatalogError, match="valid 'action'"):
        MatchPattern.from_dict({"action": "Hover"})


def test_catalog_unreadable_file(tmp_path):
    path = tmp_path / "broken.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(CatalogError):
        MethodCatalog.load(str(path))
