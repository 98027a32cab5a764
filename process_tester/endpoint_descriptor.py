# process_tester/endpoint_descriptor.py
"""
Endpoint descriptor model and schema value kinds.

A descriptor is built on demand per step: from the step's attached
``api.spec`` blob when it parses, otherwise a minimal default derived
from the step itself.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from process_tester.process_types import Step

logger = logging.getLogger(__name__)


class SchemaKind(str, Enum):
    """Closed set of schema value kinds understood by the validator and generator."""
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"

    @classmethod
    def of(cls, schema: Optional[Dict[str, Any]]) -> Optional["SchemaKind"]:
        """Kind declared by a schema node. Untyped nodes with properties count as objects."""
        if not isinstance(schema, dict):
            return None
        declared = schema.get("type")
        if isinstance(declared, str):
            try:
                return cls(declared)
            except ValueError:
                return None
        if "properties" in schema:
            return cls.OBJECT
        return None


class EndpointDescriptor(BaseModel):
    """Method, path and body contracts of one API endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    method: str = "GET"
    path: str = "/unknown"
    operation_id: str = Field(default="unknown", alias="operationId")
    summary: str = ""
    description: str = ""
    request_schema: Dict[str, Any] = Field(default_factory=dict, alias="requestSchema")
    response_schema: Dict[str, Any] = Field(default_factory=dict, alias="responseSchema")
    required_fields: List[str] = Field(default_factory=list, alias="requiredFields")

    @classmethod
    def default_for(cls, step: Step) -> "EndpointDescriptor":
        return cls(
            method=step.method.value if step.method else "GET",
            path=step.endpoint or "/unknown",
            operation_id=step.step_id or "unknown",
            summary=step.name or "",
        )

    @classmethod
    def for_step(cls, step: Step) -> "EndpointDescriptor":
        """Descriptor from the step's attached schema, else the minimal default."""
        if step.schema_ref and step.schema_ref.strip():
            try:
                return cls.model_validate_json(step.schema_ref)
            except ValidationError as e:
                logger.warning(f"Failed to parse endpoint descriptor for step {step.step_id}: {e}")
        return cls.default_for(step)
