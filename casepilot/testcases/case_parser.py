"""
Case Parser
Turns a structured test-case document (test-management XML export, JSON mapping
or numbered scenario text) into a TestCase with an ordered step list
"""

import codecs
import html
import json
import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from casepilot.errors import MalformedCaseError
from .test_case_model import Step, TestCase

logger = logging.getLogger(__name__)

RawCaseDocument = Union[Mapping[str, Any], str, bytes]

_BLOCK_TAGS = re.compile(r"<\s*(br|/p|/div|/li|/tr|/h[1-6])\s*/?\s*>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<!--.*?-->|</?[a-zA-Z][a-zA-Z0-9-]*(?:\s[^<>]*)?/?>", re.DOTALL)
_SCENARIO_STEP = re.compile(r"^\s*(\d+)[.)]\s+(.*\S)\s*$")
_SCENARIO_FIELD = re.compile(r"^\s*(data|test data|expected|expected result)\s*:\s*(.*?)\s*$", re.IGNORECASE)


def strip_markup(text: Optional[str]) -> str:
    """
    Remove presentational markup from a free-text field

    Block-level tags become line breaks, other tags are dropped, entities are
    unescaped and whitespace is collapsed per line.
    """
    if not text:
        return ""
    text = _BLOCK_TAGS.sub("\n", text)
    text = _ANY_TAG.sub("", text)
    # Exports sometimes double-escape (&amp;lt;b&amp;gt;); literal comparisons such as "&lt; 100" survive
    for _ in range(2):
        unescaped = html.unescape(text)
        if unescaped == text:
            break
        text = _ANY_TAG.sub("", unescaped)
    text = text.replace("\xa0", " ")
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return "\n".join(line for line in lines if line)


def _order_steps(case_id: str, raw_steps: List[Dict[str, Any]]) -> List[Step]:
    """Validate indices (1..n, unique) and build steps sorted by index"""
    if not raw_steps:
        raise MalformedCaseError(f"Case {case_id}: document has no steps")

    steps = []
    seen = set()
    for position, raw in enumerate(raw_steps, 1):
        raw_index = raw.get("index")
        if raw_index is None or str(raw_index).strip() == "":
            raise MalformedCaseError(f"Case {case_id}: step #{position} has no index")
        try:
            index = int(str(raw_index).strip())
        except ValueError:
            raise MalformedCaseError(f"Case {case_id}: step index {raw_index!r} is not an integer")
        if index in seen:
            raise MalformedCaseError(f"Case {case_id}: duplicate step index {index}")
        seen.add(index)

        description = strip_markup(raw.get("description"))
        if not description:
            raise MalformedCaseError(f"Case {case_id}: step {index} has no description")

        steps.append(Step(
            index=index,
            description=description,
            expected_result=strip_markup(raw.get("expected_result")),
            test_data=strip_markup(raw.get("test_data")),
        ))

    steps.sort(key=lambda s: s.index)
    expected = list(range(1, len(steps) + 1))
    actual = [s.index for s in steps]
    if actual != expected:
        missing = sorted(set(expected) - set(actual))
        raise MalformedCaseError(
            f"Case {case_id}: step indices {actual} are not a total order 1..{len(steps)}"
            + (f" (missing {missing})" if missing else "")
        )
    return steps


def _first(data: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


def parse_mapping(data: Mapping[str, Any]) -> TestCase:
    """Parse a JSON-style mapping"""
    case_id = _first(data, "id", "external_id", "externalid")
    if case_id is None or str(case_id).strip() == "":
        raise MalformedCaseError("Document has no case id")
    case_id = str(case_id).strip()

    raw_steps = _first(data, "steps", default=None)
    if not isinstance(raw_steps, list):
        raise MalformedCaseError(f"Case {case_id}: 'steps' must be an ordered list")

    normalised = []
    for raw in raw_steps:
        if not isinstance(raw, Mapping):
            raise MalformedCaseError(f"Case {case_id}: every step must be an object")
        normalised.append({
            "index": _first(raw, "index", "step_number", "number"),
            "description": _first(raw, "description", "actions", "action", default=""),
            "expected_result": _first(raw, "expected_result", "expectedResult", "expectedresults", default=""),
            "test_data": _first(raw, "test_data", "testData", "testdata", "data", default=""),
        })

    return TestCase(
        id=case_id,
        name=strip_markup(_first(data, "name", "title", default="")) or case_id,
        objective=strip_markup(_first(data, "objective", "summary", default="")),
        preconditions=strip_markup(_first(data, "preconditions", default="")),
        steps=_order_steps(case_id, normalised),
    )


def _text(node: Optional[ET.Element], tag: str) -> str:
    if node is None:
        return ""
    child = node.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text


def _parse_xml_case(node: ET.Element) -> TestCase:
    case_id = (
        _text(node, "externalid").strip()
        or node.get("external_id", "").strip()
        or node.get("id", "").strip()
        or node.get("internalid", "").strip()
    )
    if not case_id:
        raise MalformedCaseError("XML test case has no id (externalid, id or internalid)")

    steps_node = node.find("steps")
    if steps_node is None:
        raise MalformedCaseError(f"Case {case_id}: XML has no <steps> collection")

    raw_steps = []
    for step_node in steps_node.findall("step"):
        raw_steps.append({
            "index": _text(step_node, "step_number").strip() or step_node.get("index"),
            "description": _text(step_node, "actions") or _text(step_node, "description"),
            "expected_result": _text(step_node, "expectedresults") or _text(step_node, "expected_result"),
            "test_data": _text(step_node, "testdata") or _text(step_node, "test_data"),
        })

    return TestCase(
        id=case_id,
        name=strip_markup(node.get("name", "")) or case_id,
        objective=strip_markup(_text(node, "summary") or _text(node, "objective")),
        preconditions=strip_markup(_text(node, "preconditions")),
        steps=_order_steps(case_id, raw_steps),
    )


def _xml_cases(text: Union[str, bytes]) -> List[ET.Element]:
    try:
        root = ET.fromstring(_strip_bom(text))
    except ET.ParseError as e:
        raise MalformedCaseError(f"Document is not well-formed XML: {e}")

    if root.tag == "testcase":
        return [root]
    if root.tag == "testcases":
        return root.findall("testcase")
    raise MalformedCaseError(f"Unexpected XML root <{root.tag}>, expected <testcase> or <testcases>")


def parse_xml(text: Union[str, bytes]) -> TestCase:
    """Parse a single-case XML export"""
    nodes = _xml_cases(text)
    if len(nodes) != 1:
        raise MalformedCaseError(f"Expected exactly one <testcase>, found {len(nodes)}")
    return _parse_xml_case(nodes[0])


def parse_many(text: Union[str, bytes]) -> List[TestCase]:
    """Parse every case of a multi-case XML export"""
    return [_parse_xml_case(node) for node in _xml_cases(text)]


def parse_scenario_text(text: str, case_id: str = "scenario", name: str = "") -> TestCase:
    """
    Parse numbered scenario text:

        1. Open https://example.com/login
        2. Enter the user name
           Data: admin
           Expected: "Welcome" is shown
    """
    raw_steps: List[Dict[str, Any]] = []
    objective_lines = []
    for line in text.splitlines():
        if not line.strip():
            continue
        step_match = _SCENARIO_STEP.match(line)
        if step_match:
            raw_steps.append({
                "index": step_match.group(1),
                "description": step_match.group(2),
                "expected_result": "",
                "test_data": "",
            })
            continue
        field_match = _SCENARIO_FIELD.match(line)
        if field_match and raw_steps:
            key = "test_data" if "data" in field_match.group(1).lower() else "expected_result"
            raw_steps[-1][key] = field_match.group(2)
        elif raw_steps:
            raw_steps[-1]["description"] += " " + line.strip()
        else:
            objective_lines.append(line.strip())

    return TestCase(
        id=case_id,
        name=name or case_id,
        objective=" ".join(objective_lines),
        steps=_order_steps(case_id, raw_steps),
    )


def _strip_bom(document: Union[str, bytes]) -> Union[str, bytes]:
    """Windows exports often start with a UTF-8 byte order mark"""
    if isinstance(document, bytes):
        return document[len(codecs.BOM_UTF8):] if document.startswith(codecs.BOM_UTF8) else document
    return document.lstrip("\ufeff")


def _decode(document: Union[str, bytes]) -> str:
    if isinstance(document, str):
        return document
    try:
        return document.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedCaseError(f"Document is not UTF-8 text: {e}")


def parse(document: RawCaseDocument) -> TestCase:
    """
    Parse a raw case document into a TestCase

    Args:
        document: Mapping (JSON), XML string/bytes, or numbered scenario text

    Returns:
        TestCase with steps in index order, all Pending and Unknown

    Raises:
        MalformedCaseError: missing/duplicate indices, missing descriptions,
            unreadable structure
    """
    if isinstance(document, Mapping):
        case = parse_mapping(document)
    elif isinstance(document, (str, bytes)):
        document = _strip_bom(document)
        head = document.lstrip()[:1]
        if head in ("<", b"<"):
            case = parse_xml(document)
        elif head in ("{", b"{"):
            try:
                case = parse_mapping(json.loads(document))
            except (json.JSONDecodeError, UnicodeDecodeError) as e:
                raise MalformedCaseError(f"Document is not valid JSON: {e}")
        else:
            case = parse_scenario_text(_decode(document))
    else:
        raise MalformedCaseError(f"Unsupported document type: {type(document).__name__}")

    logger.info(f"Parsed case {case.id} ({case.name}) with {len(case.steps)} steps")
    return case


def load_case_file(path: Union[str, Path]) -> TestCase:
    """Read and parse a case document from disk, dispatching on extension"""
    path = Path(path)
    if path.suffix.lower() == ".xml":
        return parse(path.read_bytes())
    try:
        content = path.read_text(encoding="utf-8-sig")
    except UnicodeDecodeError as e:
        raise MalformedCaseError(f"{path} is not UTF-8 text: {e}")
    if path.suffix.lower() == ".json":
        try:
            return parse(json.loads(content))
        except json.JSONDecodeError as e:
            raise MalformedCaseError(f"{path} is not valid JSON: {e}")
    case = parse_scenario_text(content, case_id=path.stem, name=path.stem.replace("_", " "))
    logger.info(f"Parsed scenario {case.id} with {len(case.steps)} steps")
    return case
