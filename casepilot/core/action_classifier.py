"""
Action Classifier
Maps each step to an ActionKind with an ordered list of pattern rules (first
match wins) and derives the parameters the session driver needs
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from casepilot.errors import ClassificationAmbiguousError
from casepilot.testcases.test_case_model import ActionKind, Step, StepStatus, TestCase

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"\bhttps?://[^\s'\"<>]+", re.IGNORECASE)
# An apostrophe only quotes when it is not inside a word (user's, it's)
QUOTED_PATTERN = re.compile(r"\"([^\"]+)\"|“([^”]+)”|(?<!\w)'([^']+)'(?!\w)")

_NAVIGATE_VERBS = re.compile(
    r"\b(navigate to|go to|browse to|visit|launch|open\b.*\b(page|url|site|application|app|portal))\b",
    re.IGNORECASE,
)
_VERIFY_VERBS = re.compile(
    r"^\s*(verify|validate|confirm|ensure|assert|observe|check (that|whether|if))\b",
    re.IGNORECASE,
)
_UPLOAD_VERBS = re.compile(r"\b(upload|attach)\b", re.IGNORECASE)
_SELECT_CLICKABLE = re.compile(
    r"\bselect\b.*\b(link|button|tab|menu item|menu|icon)\b",
    re.IGNORECASE,
)
_SELECT_VERBS = re.compile(r"\b(select|choose|pick)\b", re.IGNORECASE)
_CHECK_VERBS = re.compile(r"\b(check|tick|uncheck|untick|toggle)\b", re.IGNORECASE)
_FILL_VERBS = re.compile(r"\b(enter|fill|type|input|provide|key in)\b", re.IGNORECASE)
_CLICK_VERBS = re.compile(r"\b(click|press|tap|submit|hit)\b", re.IGNORECASE)
_LEADING_VERB = re.compile(
    r"^\s*(navigate|go|browse|visit|launch|open|verify|validate|confirm|ensure|assert|observe|upload|attach|"
    r"select|choose|pick|check|tick|uncheck|untick|toggle|enter|fill|type|input|provide|key|click|press|tap|"
    r"submit|hit)\b",
    re.IGNORECASE,
)
_EXPECTATION_PHRASE = re.compile(
    r"\b(?:should|must|will)\s+(?:be|display|show|contain|read|equal)\b"
    r"|\b(?:is|are)\s+(?:displayed|shown|visible|present)\b",
    re.IGNORECASE,
)

_ROLE_WORDS = {
    "button": "button",
    "link": "link",
    "tab": "tab",
    "menu item": "menuitem",
    "menu": "menuitem",
    "icon": "button",
    "checkbox": "checkbox",
    "check box": "checkbox",
    "radio button": "radio",
    "radio": "radio",
    "dropdown": "combobox",
    "drop-down": "combobox",
    "list": "combobox",
    "field": "textbox",
    "textbox": "textbox",
    "text box": "textbox",
    "input": "textbox",
    "textarea": "textbox",
    "box": "textbox",
}
_ROLE_SUFFIX = re.compile(
    r"\s+(" + "|".join(sorted((re.escape(w) for w in _ROLE_WORDS), key=len, reverse=True)) + r")\s*\.?$",
    re.IGNORECASE,
)
_TARGET_AFTER_PREPOSITION = re.compile(
    r"\b(?:in|into|on|in to|for|from)\s+(?:the\s+)?(.+?)\s*\.?$",
    re.IGNORECASE,
)
_LABELLED_DATA = re.compile(r"^\s*([^:=]{2,60}?)\s*[:=]\s*(.+?)\s*$")
_EXPECT_SHOULD = re.compile(
    r"\b(?:should|must|will)\s+(?:be|display|show|contain|read|equal)\s+(?:as\s+)?(.+?)\s*\.?$",
    re.IGNORECASE,
)
_EXPECT_DISPLAYED = re.compile(
    r"^(?:the\s+)?(.+?)\s+(?:is|are)\s+(?:displayed|shown|visible|present|opened)\b",
    re.IGNORECASE,
)


def has_url(step: Step) -> bool:
    return bool(URL_PATTERN.search(step.test_data) or URL_PATTERN.search(step.description))


def quoted_fragments(text: str) -> List[str]:
    """Non-empty fragments between double, curly or standalone single quotes"""
    fragments = []
    for groups in QUOTED_PATTERN.findall(text):
        fragment = "".join(groups).strip()
        if fragment:
            fragments.append(fragment)
    return fragments


def is_expectation_phrasing(step: Step) -> bool:
    """A description worded as an outcome ("X should be Y") with no leading action verb"""
    description = step.description
    return bool(_EXPECTATION_PHRASE.search(description)) and not _LEADING_VERB.search(description)


@dataclass(frozen=True)
class ClassificationRule:
    """One (predicate, tag) pair of the ordered rule list"""
    name: str
    predicate: Callable[[Step], bool]
    kind: ActionKind


# Evaluated top to bottom; first match wins
RULES: Tuple[ClassificationRule, ...] = (
    ClassificationRule("url-present", has_url, ActionKind.NAVIGATE),
    ClassificationRule("expectation-phrasing", is_expectation_phrasing, ActionKind.ASSERT),
    ClassificationRule("navigate-verb", lambda s: bool(_NAVIGATE_VERBS.search(s.description)), ActionKind.NAVIGATE),
    ClassificationRule("verify-verb", lambda s: bool(_VERIFY_VERBS.search(s.description)), ActionKind.ASSERT),
    ClassificationRule("upload-verb", lambda s: bool(_UPLOAD_VERBS.search(s.description)), ActionKind.UPLOAD),
    ClassificationRule("select-clickable", lambda s: bool(_SELECT_CLICKABLE.search(s.description)), ActionKind.CLICK),
    ClassificationRule("select-verb", lambda s: bool(_SELECT_VERBS.search(s.description)), ActionKind.SELECT),
    ClassificationRule("check-verb", lambda s: bool(_CHECK_VERBS.search(s.description)), ActionKind.CHECK),
    ClassificationRule("fill-verb", lambda s: bool(_FILL_VERBS.search(s.description)), ActionKind.FILL),
    ClassificationRule("click-verb", lambda s: bool(_CLICK_VERBS.search(s.description)), ActionKind.CLICK),
    ClassificationRule("expectation-only", lambda s: bool(s.expected_result.strip()), ActionKind.ASSERT),
)


def classify(step: Step, rules: Iterable[ClassificationRule] = RULES) -> ActionKind:
    """
    Classify a step

    Args:
        step: Step to classify (description, test data and expected result are read)
        rules: Ordered rules, first match wins

    Returns:
        The matching ActionKind, or UNKNOWN when no rule matches
    """
    for rule in rules:
        if rule.predicate(step):
            return rule.kind
    return ActionKind.UNKNOWN


def classify_case(case: TestCase, overrides: Optional[Dict[int, ActionKind]] = None) -> List[int]:
    """
    Assign action kinds to the not-yet-succeeded steps of a case

    Human overrides win; steps already carrying a kind other than UNKNOWN keep it.

    Returns:
        Indices of steps that are still UNKNOWN
    """
    overrides = overrides or {}
    for index in overrides:
        case.step(index)  # KeyError for an override naming a missing step

    unknown = []
    for step in case.steps:
        if step.index in overrides:
            step.action_kind = overrides[step.index]
        elif step.status != StepStatus.SUCCEEDED and step.action_kind == ActionKind.UNKNOWN:
            step.action_kind = classify(step)
        if step.action_kind == ActionKind.UNKNOWN and step.status != StepStatus.SUCCEEDED:
            unknown.append(step.index)
    return unknown


def require_classified(case: TestCase, overrides: Optional[Dict[int, ActionKind]] = None) -> None:
    """
    Classify a case and refuse it when any step remains UNKNOWN

    Raises:
        ClassificationAmbiguousError: listing the unclassifiable step indices
    """
    unknown = classify_case(case, overrides)
    if unknown:
        logger.error(f"Case {case.id}: steps {unknown} need a human-assigned action kind")
        raise ClassificationAmbiguousError(case.id, unknown)


# ==========================================
# Action parameters
# ==========================================

@dataclass(frozen=True)
class ActionRequest:
    """What to dispatch to the session driver for one step"""
    kind: ActionKind
    target: str = ""
    value: str = ""
    role_hint: str = ""


def extract_expectations(text: str, infer: bool = False) -> List[str]:
    """
    Pull checkable text fragments out of an expected result

    Quoted fragments are always taken. With ``infer``, unquoted phrasing such as
    "The status should be Open" or "Dashboard is displayed" is also read, and
    the whole text is the fallback.
    """
    text = (text or "").strip()
    if not text:
        return []
    quoted = quoted_fragments(text)
    if quoted or not infer:
        return quoted

    sentence = text.splitlines()[0].strip()
    match = _EXPECT_SHOULD.search(sentence) or _EXPECT_DISPLAYED.search(sentence)
    if match:
        return [match.group(1).strip().rstrip(".")]
    return [sentence.rstrip(".")]


def _split_role(label: str) -> Tuple[str, str]:
    """'Login button' -> ('Login', 'button')"""
    match = _ROLE_SUFFIX.search(label)
    if match and match.start() > 0:
        return label[:match.start()].strip(), _ROLE_WORDS[match.group(1).lower()]
    return label.strip(), ""


def _strip_leading_verb(description: str, verbs: re.Pattern) -> str:
    match = verbs.search(description)
    remainder = description[match.end():] if match else description
    remainder = re.sub(r"^\s*(on|the|a|an)\s+", "", remainder, flags=re.IGNORECASE)
    remainder = re.sub(r"^\s*(the|a|an)\s+", "", remainder, flags=re.IGNORECASE)
    return remainder.strip().rstrip(".")


def _quoted_target(description: str, exclude: str = "") -> str:
    for fragment in quoted_fragments(description):
        if fragment != exclude:
            return fragment
    return ""


def build_request(step: Step) -> ActionRequest:
    """
    Derive the driver call parameters for a classified step

    Navigate uses the URL from test data or description; Fill/Select/Upload use
    the test data as value and the field label as target (test data written as
    "Label: value" supplies both); Click/Check use the test data or the quoted
    or trailing label; Assert targets the inferred expectation.
    """
    kind = step.action_kind
    data = step.test_data.strip()
    description = step.description

    if kind == ActionKind.NAVIGATE:
        match = URL_PATTERN.search(data) or URL_PATTERN.search(description)
        return ActionRequest(kind, target=match.group(0).rstrip(".,;") if match else data)

    if kind in (ActionKind.FILL, ActionKind.SELECT, ActionKind.UPLOAD):
        labelled = _LABELLED_DATA.match(data) if data and not URL_PATTERN.match(data) else None
        if labelled:
            label, value = labelled.group(1), labelled.group(2)
        else:
            value = data
            label = _quoted_target(description, exclude=value)
            if not label:
                prep = _TARGET_AFTER_PREPOSITION.search(description)
                verbs = {ActionKind.FILL: _FILL_VERBS, ActionKind.SELECT: _SELECT_VERBS,
                         ActionKind.UPLOAD: _UPLOAD_VERBS}[kind]
                label = prep.group(1) if prep else _strip_leading_verb(description, verbs)
        target, role = _split_role(label)
        if not value:
            value = _quoted_target(description, exclude=target)
        return ActionRequest(kind, target=target, value=value, role_hint=role)

    if kind in (ActionKind.CLICK, ActionKind.CHECK):
        verbs = _CLICK_VERBS if kind == ActionKind.CLICK else _CHECK_VERBS
        if kind == ActionKind.CLICK and not _CLICK_VERBS.search(description):
            verbs = _SELECT_VERBS
        label = data or _quoted_target(description) or _strip_leading_verb(description, verbs)
        target, role = _split_role(label)
        if not role:
            _, role = _split_role(_strip_leading_verb(description, verbs))
        return ActionRequest(kind, target=target, role_hint=role)

    if kind == ActionKind.ASSERT:
        source = step.expected_result or description
        expectations = extract_expectations(source, infer=True)
        return ActionRequest(kind, target=expectations[0] if expectations else "", value=data)

    return ActionRequest(kind)
