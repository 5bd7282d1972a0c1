"""
Action Classifier tests - rule order, determinism and driver parameters
"""

import sys
import logging
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from casepilot.core.action_classifier import (
    RULES,
    ClassificationRule,
    build_request,
    classify,
    classify_case,
    extract_expectations,
    quoted_fragments,
    require_classified,
)
from casepilot.errors import ClassificationAmbiguousError
from casepilot.testcases.case_parser import parse
from casepilot.testcases.test_case_model import ActionKind, Step, StepStatus
from sample_cases import five_step_document

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _step(description, test_data="", expected_result="", kind=None):
    step = Step(index=1, description=description, test_data=test_data, expected_result=expected_result)
    if kind is not None:
        step.action_kind = kind
    return step


def test_url_step_is_navigate():
    """An 'Open <url>' step navigates to that URL"""
    logger.info("=== Testing Navigate classification ===")

    step = _step("Open https://example.com/login")

    assert classify(step) == ActionKind.NAVIGATE
    step.action_kind = ActionKind.NAVIGATE
    assert build_request(step).target == "https://example.com/login"
    logger.info("✅ URL step classified as Navigate")


def test_url_in_test_data_is_navigate_target():
    step = _step("Open the login page", test_data="https://example.com/login?next=/home", kind=ActionKind.NAVIGATE)

    assert classify(step) == ActionKind.NAVIGATE
    assert build_request(step).target == "https://example.com/login?next=/home"


def test_expectation_without_verb_is_assert():
    """No actionable verb plus an expected result means confirm, not act"""
    step = _step("Review the issue", expected_result="The Issue status should be Open")

    assert classify(step) == ActionKind.ASSERT
    step.action_kind = ActionKind.ASSERT
    assert build_request(step).target == "Open"


def test_classification_is_deterministic():
    document = five_step_document()
    first = [classify(s) for s in parse(document).steps]
    second = [classify(s) for s in parse(document).steps]

    assert first == second
    assert first == [
        ActionKind.NAVIGATE,
        ActionKind.FILL,
        ActionKind.CLICK,
        ActionKind.SELECT,
        ActionKind.ASSERT,
    ]


def test_classify_does_not_mutate_step():
    step = _step("Click the Save button")
    before = step.to_dict()
    classify(step)
    assert step.to_dict() == before


def test_first_matching_rule_wins():
    assert classify(_step("Navigate to the dashboard and click Save")) == ActionKind.NAVIGATE
    assert classify(_step("Verify the Save button is enabled")) == ActionKind.ASSERT
    assert classify(_step("Select the Reports link")) == ActionKind.CLICK
    assert classify(_step("Select Germany from the Country list")) == ActionKind.SELECT
    assert classify(_step("Check that the banner says Welcome")) == ActionKind.ASSERT
    assert classify(_step("Check the Remember me checkbox")) == ActionKind.CHECK
    assert classify(_step("Upload the invoice", test_data="invoice.pdf")) == ActionKind.UPLOAD
    assert classify(_step("Type the password")) == ActionKind.FILL


def test_unmatched_step_is_unknown():
    assert classify(_step("Wait a moment")) == ActionKind.UNKNOWN


def test_custom_rule_list():
    rules = (ClassificationRule("wait", lambda s: "wait" in s.description.lower(), ActionKind.ASSERT),) + RULES
    assert classify(_step("Wait a moment"), rules) == ActionKind.ASSERT


def test_classify_case_reports_unknown_and_applies_overrides():
    case = parse({
        "id": "TC-3",
        "steps": [
            {"index": 1, "description": "Click Save"},
            {"index": 2, "description": "Wait a moment"},
        ],
    })

    assert classify_case(case) == [2]
    assert case.step(1).action_kind == ActionKind.CLICK

    with pytest.raises(ClassificationAmbiguousError) as excinfo:
        require_classified(case)
    assert excinfo.value.step_indices == [2]

    assert classify_case(case, {2: ActionKind.ASSERT}) == []
    assert case.step(2).action_kind == ActionKind.ASSERT


def test_override_for_missing_step_rejected():
    case = parse(five_step_document())
    with pytest.raises(KeyError):
        classify_case(case, {9: ActionKind.CLICK})


def test_succeeded_steps_keep_their_kind():
    case = parse(five_step_document())
    case.step(1).action_kind = ActionKind.NAVIGATE
    case.step(1).status = StepStatus.SUCCEEDED
    case.step(2).description = "Wait a moment"

    assert classify_case(case) == [2]
    assert case.step(1).action_kind == ActionKind.NAVIGATE


def test_build_request_fill_and_select():
    case = parse(five_step_document())
    classify_case(case)

    fill = build_request(case.step(2))
    assert (fill.target, fill.value, fill.role_hint) == ("Username", "admin", "textbox")

    click = build_request(case.step(3))
    assert (click.target, click.role_hint) == ("Sign in", "button")

    select = build_request(case.step(4))
    assert (select.target, select.value, select.role_hint) == ("Priority", "High", "combobox")


def test_build_request_labelled_data():
    step = _step("Fill in the form", test_data="Email: qa@example.com", kind=ActionKind.FILL)
    request = build_request(step)
    assert (request.target, request.value) == ("Email", "qa@example.com")


def test_build_request_keeps_windows_path_as_value():
    step = _step("Upload the invoice", test_data=r"C:\files\invoice.pdf", kind=ActionKind.UPLOAD)
    request = build_request(step)
    assert request.value == r"C:\files\invoice.pdf"
    assert request.target == "invoice"


def test_build_request_click_and_check_roles():
    link = build_request(_step("Select the Reports link", kind=ActionKind.CLICK))
    assert (link.target, link.role_hint) == ("Reports", "link")

    box = build_request(_step("Check the Remember me checkbox", kind=ActionKind.CHECK))
    assert (box.target, box.role_hint) == ("Remember me", "checkbox")


def test_extract_expectations():
    assert extract_expectations('The "Dashboard" heading is displayed') == ["Dashboard"]
    assert extract_expectations("Dashboard is displayed") == []
    assert extract_expectations("Dashboard is displayed", infer=True) == ["Dashboard"]
    assert extract_expectations("The Issue status should be Open.", infer=True) == ["Open"]
    assert extract_expectations("Welcome banner appears", infer=True) == ["Welcome banner appears"]
    assert extract_expectations("", infer=True) == []


def test_apostrophes_are_not_quotes():
    """Possessives and contractions never become expected fragments"""
    logger.info("=== Testing apostrophes in expected results ===")
    assert extract_expectations("The user's profile is saved and it's shown") == []
    assert extract_expectations("The user's name reads 'Jane Doe'") == ["Jane Doe"]
    assert extract_expectations("Banner says “Welcome back”") == ["Welcome back"]
    assert quoted_fragments("Click 'Save' on the user's form") == ["Save"]

    click = build_request(_step("Click the user's 'Save' button", kind=ActionKind.CLICK))
    assert click.target == "Save"
    logger.info("✅ Apostrophes ignored")


def test_outcome_wording_without_verb_is_assert():
    """Nouns such as 'type' or 'page' do not pick an action for an outcome sentence"""
    logger.info("=== Testing expectation phrasing ===")
    assert classify(_step("The ticket type should be Incident")) == ActionKind.ASSERT
    assert classify(_step("status should be Open on the issue page")) == ActionKind.ASSERT
    assert classify(_step("The Submit button is visible")) == ActionKind.ASSERT
    assert classify(_step("Click Save so the record should be stored")) == ActionKind.CLICK
    assert classify(_step("Enter the ticket type", test_data="Incident")) == ActionKind.FILL
    logger.info("✅ Outcome phrasing classified as Assert")
