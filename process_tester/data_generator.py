# process_tester/data_generator.py
"""
Test data sources for request payloads.

The engine only needs something with ``generate(descriptor, context) -> dict``.
SchemaDataGenerator is the built-in rule-based source: one generator per
schema kind, banking-flavoured field-name heuristics, Faker for values.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple

from faker import Faker

from process_tester.endpoint_descriptor import EndpointDescriptor, SchemaKind

logger = logging.getLogger(__name__)


class PayloadDataSource(Protocol):
    """Collaborator contract for test-data synthesis."""

    def generate(self, descriptor: EndpointDescriptor, context: Mapping[str, Any]) -> Dict[str, Any]:
        ...


class SchemaDataGenerator:
    """Rule-based request data from the descriptor's request schema."""

    def __init__(self, seed: Optional[int] = None, optional_field_chance: int = 70, locale: str = "en_US"):
        """
        Args:
            seed: Seed for reproducible values
            optional_field_chance: Percent chance an optional property is generated
        """
        self.faker = Faker(locale)
        if seed is not None:
            self.faker.seed_instance(seed)
        self.optional_field_chance = optional_field_chance

        self._generators: Dict[SchemaKind, Callable[[str, Dict[str, Any]], Any]] = {
            SchemaKind.STRING: self._string_value,
            SchemaKind.INTEGER: self._integer_value,
            SchemaKind.NUMBER: self._number_value,
            SchemaKind.BOOLEAN: lambda name, schema: self.faker.boolean(),
            SchemaKind.ARRAY: self._array_value,
            SchemaKind.OBJECT: self._object_value,
        }

    # ==================== Public API ====================

    def generate(self, descriptor: EndpointDescriptor, context: Mapping[str, Any]) -> Dict[str, Any]:
        schema = descriptor.request_schema or {}
        properties = schema.get("properties")

        if not isinstance(properties, dict) or not properties:
            data = self._default_data(descriptor)
            logger.info(f"Generated default data for {descriptor.path}")
            return data

        required = set(descriptor.required_fields) | set(schema.get("required") or [])
        data: Dict[str, Any] = {}
        for name, field_schema in properties.items():
            if name in context:
                data[name] = context[name]
                continue
            value = self.generate_value(name, field_schema or {}, required=name in required)
            if value is not None:
                data[name] = value

        logger.info(f"Generated fallback test data for {descriptor.path}")
        return data

    def generate_value(self, name: str, schema: Dict[str, Any], required: bool = True) -> Any:
        """Value for one field; optional fields are sometimes skipped (None)."""
        if not required and not self.faker.boolean(chance_of_getting_true=self.optional_field_chance):
            return None
        kind = SchemaKind.of(schema) or SchemaKind.STRING
        return self._generators[kind](name, schema)

    # ==================== Per-kind generators ====================

    def _string_value(self, name: str, schema: Dict[str, Any]) -> str:
        lowered = name.lower()
        fmt = schema.get("format")

        if "account" in lowered and "id" in lowered:
            return self.faker.numerify("40817810############")
        if "card" in lowered and "number" in lowered:
            return self.faker.numerify("4276############")
        if "phone" in lowered:
            return self.faker.numerify("+7##########")
        if "email" in lowered:
            return self.faker.email()
        if "amount" in lowered or "sum" in lowered:
            return str(self.faker.random_int(min=100, max=100_099))

        if fmt == "date":
            return self.faker.date()
        if fmt == "date-time":
            return self.faker.iso8601() + "Z"
        if fmt == "uuid":
            return self.faker.uuid4()

        if schema.get("enum"):
            return self.faker.random_element(schema["enum"])

        return f"test_{name}_{self.faker.random_int(min=0, max=999)}"

    @staticmethod
    def _bounds(schema: Dict[str, Any], span: float) -> Tuple[float, float]:
        """Schema minimum/maximum, each honoured on its own; a missing side sits ``span`` away."""
        low, high = schema.get("minimum"), schema.get("maximum")
        if low is None and high is None:
            return 0.0, span
        if low is None:
            high = float(high)
            return (0.0 if high >= 0 else high - span), high
        low = float(low)
        return low, (low + span if high is None else float(high))

    def _integer_value(self, name: str, schema: Dict[str, Any]) -> int:
        low, high = self._bounds(schema, 9_999)
        return self.faker.random_int(min=math.ceil(low), max=math.floor(high))

    def _number_value(self, name: str, schema: Dict[str, Any]) -> float:
        low, high = self._bounds(schema, 10_000)
        value = round(low + (high - low) * self.faker.random.random(), 2)
        return min(max(value, low), high)

    def _array_value(self, name: str, schema: Dict[str, Any]) -> list:
        items = schema.get("items")
        if not isinstance(items, dict):
            return []
        size = self.faker.random_int(min=1, max=3)
        return [self.generate_value("item", items, required=True) for _ in range(size)]

    def _object_value(self, name: str, schema: Dict[str, Any]) -> Dict[str, Any]:
        obj: Dict[str, Any] = {}
        for prop, prop_schema in (schema.get("properties") or {}).items():
            value = self.generate_value(prop, prop_schema or {}, required=False)
            if value is not None:
                obj[prop] = value
        return obj

    # ==================== Schema-less defaults ====================

    def _default_data(self, descriptor: EndpointDescriptor) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        path = descriptor.path or ""

        if "{externalAccountID}" in path:
            data["externalAccountID"] = self.faker.numerify("40817810############")
        if "{accountId}" in path:
            data["accountId"] = self.faker.numerify("40817810############")
        if "{cardId}" in path:
            data["cardId"] = self.faker.numerify("4276############")
        if "{transactionId}" in path:
            data["transactionId"] = self.faker.numerify("TXN###############")

        if descriptor.method.upper() in ("POST", "PUT"):
            data["amount"] = self.faker.random_int(min=100, max=10_099)
            data["currency"] = "RUB"
            data["description"] = "Test transaction"

        return data
