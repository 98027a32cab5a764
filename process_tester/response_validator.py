# process_tester/response_validator.py
"""
Response validation against an endpoint's declared response schema.

✅ 2xx status check
✅ Missing body / invalid JSON detection
✅ JSON Schema checks via jsonschema (all violations, not just the first)
✅ Readable violation strings with field paths (e.g. items[2].id)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx
from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError, ValidationError

from process_tester.endpoint_descriptor import EndpointDescriptor

logger = logging.getLogger(__name__)


def _json_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int):
        return "integer"
    if isinstance(value, float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def _location(base: str, parts: Iterable[Any]) -> str:
    loc = base
    for part in parts:
        if isinstance(part, int):
            loc += f"[{part}]"
        else:
            loc = f"{loc}.{part}" if loc else str(part)
    return loc


def _describe(error: ValidationError, base: str) -> List[str]:
    """Turn one jsonschema error into violation strings."""
    loc = _location(base, error.absolute_path)
    where = loc or "body"
    kind = error.validator
    limit = error.validator_value
    value = error.instance

    if kind == "required":
        prefix = f"{loc}." if loc else ""
        present = value if isinstance(value, dict) else {}
        return [f"Required field missing: {prefix}{name}" for name in limit if name not in present]
    if kind == "type":
        expected = " or ".join(limit) if isinstance(limit, list) else limit
        return [f"{where}: expected {expected}, got {_json_kind(value)}"]
    if kind == "minLength":
        return [f"{where}: length {len(value)} < minimum {limit}"]
    if kind == "maxLength":
        return [f"{where}: length {len(value)} > maximum {limit}"]
    if kind == "pattern":
        return [f"{where}: value does not match pattern {limit}"]
    if kind == "enum":
        return [f"{where}: value not in allowed values {limit}"]
    if kind == "minimum":
        return [f"{where}: value {value} < minimum {limit}"]
    if kind == "maximum":
        return [f"{where}: value {value} > maximum {limit}"]
    if kind == "minItems":
        return [f"{where}: array size {len(value)} < minimum {limit}"]
    if kind == "maxItems":
        return [f"{where}: array size {len(value)} > maximum {limit}"]
    return [f"{where}: {error.message}"]


def validate_value(value: Any, schema: Optional[Dict[str, Any]], path: str = "") -> List[str]:
    """Violations of ``value`` against ``schema``. Empty schemas accept anything."""
    if not schema:
        return []

    try:
        Draft7Validator.check_schema(schema)
    except SchemaError as e:
        return [f"Invalid response schema: {e.message}"]

    errors: List[str] = []
    found = Draft7Validator(schema).iter_errors(value)
    for error in sorted(found, key=lambda e: [str(p) for p in e.absolute_path]):
        for message in _describe(error, path):
            if message not in errors:
                errors.append(message)
    return errors


def validate_body(status_code: int, body: Optional[str], response_schema: Optional[Dict[str, Any]]) -> List[str]:
    """
    Check a raw response (status + body text) against a response schema.

    An empty schema means "no body contract": the body is not parsed.
    """
    errors: List[str] = []
    schema = response_schema or {}

    if not 200 <= status_code < 300:
        errors.append(f"Expected 2xx status, got: {status_code}")

    if body is None or not body.strip():
        if schema:
            errors.append("Expected response body but got empty response")
        return errors

    if not schema:
        return errors

    try:
        data = json.loads(body)
    except ValueError as e:
        errors.append(f"Invalid JSON response: {e}")
        return errors

    errors.extend(validate_value(data, schema))
    return errors


def validate_response(response: httpx.Response, descriptor: EndpointDescriptor) -> List[str]:
    """Validate an HTTP response against the descriptor's response schema."""
    errors = validate_body(response.status_code, response.text, descriptor.response_schema)
    if errors:
        logger.warning(f"Validation errors for {descriptor.method} {descriptor.path}: {errors}")
    return errors
