# process_tester/process_parser.py
"""
Process Definition Parser

Turns diagram text into an ordered, immutable ProcessDefinition.

Dialects:
✅ Arrow (sequence diagram) lines: ``Source -> Target: METHOD /path(params)``
✅ Structured graph (BPMN 2.0 XML): service tasks and tasks, with API info
   from camunda properties, documentation lines or the task name
✅ Flow-graph reordering from the start event with a 2x iteration cap
✅ Contiguous 0..N-1 step order

Usage:
    process = parse_process(text)            # dialect auto-detected
    process = parse_bpmn_xml(xml, "Payments")
    process = parse_sequence_diagram(text)
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Tuple
from xml.etree import ElementTree as ET

from process_tester.process_types import (
    HttpMethod,
    ProcessDefinition,
    ProcessParseError,
    Step,
    StepKind,
)

logger = logging.getLogger(__name__)

# ==================== Patterns ====================

_METHODS = "GET|POST|PUT|DELETE|PATCH"

_ARROW_RE = re.compile(r"^\s*(.+?)\s*->\s*(.+?)\s*:\s*(.+)$")
_ACTION_CALL_RE = re.compile(rf"\b({_METHODS})\s+([^\s(]+)")
_DOC_CALL_RE = re.compile(rf"^({_METHODS})\s+(/.+)$")
_NAME_COLON_CALL_RE = re.compile(rf":\s*({_METHODS})\s+(/\S*)")
_NAME_CALL_RE = re.compile(rf"\b({_METHODS})\s+(/\S*)")

_SKIP_PREFIXES = ("@", "title", "participant", "actor", "//", "activate", "deactivate")

DEFAULT_SEQUENCE_NAME = "Sequence Diagram Process"

# BPMN element local names
_SERVICE_TASK = "serviceTask"
_PLAIN_TASKS = {
    "task", "userTask", "scriptTask", "sendTask",
    "receiveTask", "manualTask", "businessRuleTask",
}
_OTHER_FLOW_NODES = {
    "subProcess", "callActivity", "intermediateCatchEvent",
    "intermediateThrowEvent", "boundaryEvent",
}


def _local(tag: str) -> str:
    """Strip the XML namespace from a tag."""
    return tag.rsplit("}", 1)[-1] if isinstance(tag, str) else ""


@dataclass
class _ApiInfo:
    """Endpoint/method/spec gathered for one unit before the Step is frozen."""
    method: Optional[str] = None
    endpoint: Optional[str] = None
    spec: Optional[str] = None

    def update(self, method: Optional[str] = None, endpoint: Optional[str] = None, spec: Optional[str] = None):
        if method:
            self.method = method.strip().upper()
        if endpoint:
            self.endpoint = endpoint.strip()
        if spec:
            self.spec = spec


# ==================== Line-shape extractors ====================

def match_arrow_line(line: str) -> Optional[Tuple[str, str, str]]:
    """Split ``Source -> Target: ACTION`` into its three parts, or None."""
    m = _ARROW_RE.match(line)
    if not m:
        return None
    return m.group(1).strip(), m.group(2).strip(), m.group(3).strip()


def extract_action_call(action: str) -> Optional[Tuple[str, str, str]]:
    """Return (method, path, params) from an arrow action, or None when no method is present."""
    m = _ACTION_CALL_RE.search(action)
    if not m:
        return None
    params = ""
    start, end = action.find("("), action.rfind(")")
    if start != -1 and end > start:
        params = action[start + 1:end]
    return m.group(1), m.group(2), params


def extract_call_from_name(name: Optional[str]) -> Optional[Tuple[str, str]]:
    """Method and path embedded in a display name (``Pay: POST /payments`` or ``POST /payments``)."""
    if not name:
        return None
    m = _NAME_COLON_CALL_RE.search(name) or _NAME_CALL_RE.search(name)
    if not m:
        return None
    return m.group(1), m.group(2)


def parse_documentation(text: Optional[str]) -> Dict[str, str]:
    """
    Read API info from free-text documentation.

    Recognised lines: ``METHOD /path`` (wins immediately), ``endpoint: <value>``
    and ``method: <VERB>``. Returns a dict with ``method``/``endpoint`` keys.
    """
    found: Dict[str, str] = {}
    if not text or not text.strip():
        return found

    for raw in text.split("\n"):
        line = raw.strip()
        m = _DOC_CALL_RE.match(line)
        if m:
            return {"method": m.group(1), "endpoint": m.group(2).strip()}

        lowered = line.lower()
        if lowered.startswith("endpoint:"):
            found["endpoint"] = line[len("endpoint:"):].strip()
        if lowered.startswith("method:"):
            found["method"] = line[len("method:"):].strip().upper()

    return found


# ==================== Arrow dialect ====================

def validate_sequence_diagram(text: Optional[str]) -> None:
    """Raise ProcessParseError unless the text looks like an arrow diagram."""
    if text is None or not text.strip():
        raise ProcessParseError("Sequence diagram cannot be empty")
    if "->" not in text:
        raise ProcessParseError("Invalid sequence diagram format: no arrows found")


def parse_sequence_diagram(text: str, name: Optional[str] = None) -> ProcessDefinition:
    """Parse the arrow dialect into a ProcessDefinition."""
    validate_sequence_diagram(text)

    steps: List[Step] = []
    for raw in text.split("\n"):
        line = raw.strip()
        if not line or line.startswith(_SKIP_PREFIXES):
            continue

        parts = match_arrow_line(line)
        if parts is None:
            continue
        _source, _target, action = parts
        order = len(steps)

        call = extract_action_call(action)
        if call is None:
            steps.append(Step(step_id=f"step_{order}", name=action, order=order))
            logger.debug(f"Extracted non-API step: {action}")
            continue

        method, endpoint, params = call
        display = f"{method} {endpoint}" + (f" ({params})" if params else "")
        steps.append(Step(
            step_id=f"step_{order}",
            name=display,
            order=order,
            kind=StepKind.SERVICE_CALL,
            method=HttpMethod.parse(method),
            endpoint=endpoint,
        ))
        logger.debug(f"Extracted step: {method} {endpoint}")

    if not steps:
        raise ProcessParseError("Cannot parse sequence diagram: no steps found")

    process = ProcessDefinition(
        name=name or DEFAULT_SEQUENCE_NAME,
        source=text,
        steps=tuple(steps),
        description="Parsed from sequence diagram",
    )
    logger.info(f"Parsed sequence diagram '{process.name}': {len(steps)} steps")
    return process


# ==================== Structured-graph dialect ====================

def _read_xml(xml_text: Optional[str]) -> ET.Element:
    if xml_text is None or not xml_text.strip():
        raise ProcessParseError("BPMN XML cannot be empty")
    try:
        return ET.fromstring(xml_text.strip())
    except ET.ParseError as e:
        raise ProcessParseError(f"Invalid BPMN XML: {e}") from e


def _find_process(root: ET.Element) -> ET.Element:
    for elem in root.iter():
        if _local(elem.tag) == "process":
            return elem
    raise ProcessParseError("No BPMN process found in XML")


def validate_bpmn_xml(xml_text: Optional[str]) -> None:
    """Raise ProcessParseError unless the XML is well-formed and holds a process."""
    _find_process(_read_xml(xml_text))
    logger.debug("BPMN XML validation successful")


def _documentation(elem: ET.Element) -> Optional[str]:
    for child in elem:
        if _local(child.tag) == "documentation":
            return "".join(child.itertext())
    return None


def _extension_properties(elem: ET.Element) -> Iterable[Tuple[str, str]]:
    for child in elem:
        if _local(child.tag) != "extensionElements":
            continue
        for prop in child.iter():
            if _local(prop.tag) == "property":
                yield prop.get("name") or "", prop.get("value") or ""


def _api_info(elem: ET.Element, name: Optional[str]) -> _ApiInfo:
    """Layer API info: name, then documentation, then properties (last one wins)."""
    info = _ApiInfo()

    call = extract_call_from_name(name)
    if call:
        info.update(method=call[0], endpoint=call[1])

    doc = parse_documentation(_documentation(elem))
    info.update(method=doc.get("method"), endpoint=doc.get("endpoint"))

    for prop_name, value in _extension_properties(elem):
        if prop_name == "api.endpoint":
            info.update(endpoint=value)
        elif prop_name == "api.method":
            info.update(method=value)
        elif prop_name == "api.spec":
            info.update(spec=value)

    return info


def _unit_to_step(elem: ET.Element, order: int) -> Step:
    step_id = elem.get("id") or f"node_{order}"
    name = elem.get("name") or step_id
    info = _api_info(elem, elem.get("name"))
    logger.debug(f"Extracted API info for task {step_id}: endpoint={info.endpoint}, method={info.method}")
    return Step(
        step_id=step_id,
        name=name,
        order=order,
        kind=StepKind.SERVICE_CALL,
        method=HttpMethod.parse(info.method),
        endpoint=info.endpoint,
        schema_ref=info.spec,
    )


def _extract_units(process: ET.Element) -> List[Step]:
    nodes = list(process.iter())

    service = [e for e in nodes if _local(e.tag) == _SERVICE_TASK]
    plain = [e for e in nodes if _local(e.tag) in _PLAIN_TASKS]

    steps = [_unit_to_step(e, i) for i, e in enumerate(service)]
    steps += [_unit_to_step(e, len(steps) + i) for i, e in enumerate(plain)]
    logger.info(f"Extracted ServiceTasks: {len(service)}, RegularTasks: {len(plain)}")

    if steps:
        return steps

    logger.warning("No tasks found in standard way, trying all FlowNodes")
    flow_tags = _PLAIN_TASKS | _OTHER_FLOW_NODES | {_SERVICE_TASK}
    fallback = [e for e in nodes if _local(e.tag) in flow_tags and e.get("name")]
    return [_unit_to_step(e, i) for i, e in enumerate(fallback)]


def order_by_flow(
    steps: List[Step],
    successors: Dict[str, str],
    start_id: Optional[str],
) -> List[Step]:
    """
    Reorder steps by walking the successor map from the start node.

    Each node is visited at most once and the walk stops after 2 x len(steps)
    iterations. Steps never reached keep their original relative order at the
    end. Order is reassigned 0..N-1. Without a start node the input order stays.
    """
    if not steps:
        return []

    if start_id is None:
        logger.warning("No start event found, returning steps as-is")
        return [replace(s, order=i) for i, s in enumerate(steps)]

    by_id = {}
    for s in steps:
        by_id.setdefault(s.step_id, s)

    ordered: List[Step] = []
    visited = set()
    current: Optional[str] = start_id
    max_iterations = len(steps) * 2
    iterations = 0

    while current is not None and current not in visited and iterations < max_iterations:
        visited.add(current)
        iterations += 1
        step = by_id.get(current)
        if step is not None:
            ordered.append(step)
        current = successors.get(current)

    placed = {id(s) for s in ordered}
    ordered.extend(s for s in steps if id(s) not in placed)

    return [replace(s, order=i) for i, s in enumerate(ordered)]


def _flow_graph(process: ET.Element) -> Tuple[Dict[str, str], Optional[str]]:
    successors: Dict[str, str] = {}
    start_id: Optional[str] = None
    for elem in process.iter():
        tag = _local(elem.tag)
        if tag == "sequenceFlow":
            src, tgt = elem.get("sourceRef"), elem.get("targetRef")
            if src and tgt:
                successors[src] = tgt  # last edge per source wins
        elif tag == "startEvent" and start_id is None:
            start_id = elem.get("id")
    return successors, start_id


def parse_bpmn_xml(xml_text: str, name: Optional[str] = None) -> ProcessDefinition:
    """Parse BPMN 2.0 XML into a ProcessDefinition."""
    root = _read_xml(xml_text)
    process = _find_process(root)

    steps = _extract_units(process)
    if not steps:
        raise ProcessParseError("Cannot parse BPMN XML: no tasks found")

    successors, start_id = _flow_graph(process)
    steps = order_by_flow(steps, successors, start_id)

    definition = ProcessDefinition(
        name=name or process.get("name") or process.get("id") or "BPMN Process",
        source=xml_text,
        steps=tuple(steps),
        description=_documentation(process) or "No description provided",
    )
    logger.info(f"Parsed BPMN process '{definition.name}' with {len(steps)} tasks")
    return definition


# ==================== Entry point ====================

def parse_process(text: str, name: Optional[str] = None) -> ProcessDefinition:
    """Parse either dialect; XML is recognised by its leading '<'."""
    if text is not None and text.lstrip().startswith("<"):
        return parse_bpmn_xml(text, name)
    return parse_sequence_diagram(text, name)
