# process_tester/payload_policy.py
"""
Declarative per-endpoint payload overrides.

An override pairs an endpoint pattern (``{var}`` segments and ``*``
wildcards allowed) with a fixed payload template. Template strings may
reference context values as ``{{name}}``. By default an overridden endpoint
is context-exempt: the accumulated context is not merged into its body.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Pattern

from process_tester.endpoint_resolver import compile_path_pattern

logger = logging.getLogger(__name__)

_TEMPLATE_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


def render_template(value: Any, ctx: Mapping[str, Any]) -> Any:
    """Render ``{{var}}`` references; a string that is exactly one reference keeps the value's type."""
    if value is None:
        return None

    if isinstance(value, str):
        whole = _TEMPLATE_RE.fullmatch(value.strip())
        if whole and ctx.get(whole.group(1)) is not None:
            return ctx[whole.group(1)]

        def replace(match: re.Match) -> str:
            v = ctx.get(match.group(1))
            return str(v) if v is not None else match.group(0)
        return _TEMPLATE_RE.sub(replace, value)

    if isinstance(value, dict):
        return {k: render_template(v, ctx) for k, v in value.items()}

    if isinstance(value, list):
        return [render_template(v, ctx) for v in value]

    return value


@dataclass(frozen=True)
class PayloadOverride:
    """Fixed payload for endpoints matching ``pattern``."""
    pattern: str
    payload: Dict[str, Any] = field(default_factory=dict)
    merge_context: bool = False

    @property
    def regex(self) -> Pattern[str]:
        return compile_path_pattern(self.pattern, wildcard=True)

    def matches(self, *paths: Optional[str]) -> bool:
        regex = self.regex
        return any(p and regex.match(p) for p in paths)


class PayloadPolicy:
    """Composes request payloads, consulting the override table before merging context."""

    def __init__(self, overrides: Iterable[PayloadOverride] = ()):
        self._overrides: List[PayloadOverride] = list(overrides)

    @classmethod
    def from_config(cls, entries: Iterable[Mapping[str, Any]]) -> "PayloadPolicy":
        return cls(
            PayloadOverride(
                pattern=e["pattern"],
                payload=dict(e.get("payload") or {}),
                merge_context=bool(e.get("merge_context", False)),
            )
            for e in entries
        )

    def __len__(self) -> int:
        return len(self._overrides)

    def find(self, *paths: Optional[str]) -> Optional[PayloadOverride]:
        """First override matching any of the given paths."""
        for override in self._overrides:
            if override.matches(*paths):
                return override
        return None

    def compose(
        self,
        endpoint: Optional[str],
        resolved_path: Optional[str],
        generated: Optional[Mapping[str, Any]],
        context: Mapping[str, Any],
    ) -> Dict[str, Any]:
        """
        Build the request payload: generated data, then the accumulated
        context, unless an override marks the endpoint context-exempt. The
        override payload is applied last.
        """
        payload: Dict[str, Any] = {}
        if generated:
            payload.update(generated)

        override = self.find(endpoint, resolved_path)
        if override is None:
            payload.update(context)
            return payload

        if override.merge_context:
            payload.update(context)
        payload.update(render_template(override.payload, context))
        logger.info(f"Applied payload override '{override.pattern}' to {resolved_path or endpoint}")
        return payload
