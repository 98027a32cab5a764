# process_tester/endpoint_resolver.py
"""
Endpoint Resolver

Rewrites abstract diagram paths to the concrete paths of the target API.
Lookup order: exact match, then ``{var}`` pattern match (captured values are
substituted positionally into the replacement), else the path is returned
unchanged. The table is filled at startup and only read afterwards.
"""

from __future__ import annotations

import logging
import re
from typing import Dict, List, Mapping, Optional, Pattern, Tuple

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{([^{}/]+)\}")


def compile_path_pattern(template: str, wildcard: bool = False) -> Pattern[str]:
    """
    Anchored regex for a path template; each ``{var}`` captures one segment.

    With ``wildcard`` a ``*`` in the template matches any remainder.
    """
    parts: List[str] = []
    pos = 0
    for m in PLACEHOLDER_RE.finditer(template):
        parts.append(_escape(template[pos:m.start()], wildcard))
        parts.append("([^/]+)")
        pos = m.end()
    parts.append(_escape(template[pos:], wildcard))
    return re.compile("^" + "".join(parts) + "$")


def _escape(literal: str, wildcard: bool) -> str:
    if not wildcard:
        return re.escape(literal)
    return ".*".join(re.escape(chunk) for chunk in literal.split("*"))


def placeholder_names(path: str) -> List[str]:
    """Names of the ``{var}`` placeholders in a path, in order."""
    return PLACEHOLDER_RE.findall(path or "")


class EndpointResolver:
    """Abstract-to-concrete path rewriter."""

    def __init__(self, mappings: Optional[Mapping[str, str]] = None):
        self._exact: Dict[str, str] = {}
        self._patterns: List[Tuple[Pattern[str], str, str]] = []
        for abstract, concrete in (mappings or {}).items():
            self.add_mapping(abstract, concrete)

    def add_mapping(self, abstract: str, concrete: str) -> None:
        """Register a mapping. Call during startup only."""
        self._exact[abstract] = concrete
        if PLACEHOLDER_RE.search(abstract):
            self._patterns.append((compile_path_pattern(abstract), concrete, abstract))
        logger.info(f"Added endpoint mapping: {abstract} -> {concrete}")

    @property
    def mappings(self) -> Dict[str, str]:
        return dict(self._exact)

    def resolve(self, path: Optional[str]) -> Optional[str]:
        """Concrete path for ``path``; unmapped paths pass through unchanged."""
        if not path:
            return path

        mapped = self._exact.get(path)
        if mapped is not None:
            logger.debug(f"Mapped endpoint: {path} -> {mapped}")
            return mapped

        for regex, replacement, abstract in self._patterns:
            m = regex.match(path)
            if not m:
                continue
            values = iter(m.groups())
            result = PLACEHOLDER_RE.sub(lambda _: next(values), replacement, count=len(m.groups()))
            logger.debug(f"Mapped endpoint (pattern {abstract}): {path} -> {result}")
            return result

        logger.debug(f"No mapping found for endpoint: {path}")
        return path
