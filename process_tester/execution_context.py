# process_tester/execution_context.py
"""
Execution context: key/value state accumulated across the steps of one execution.

Keys are never removed. Step-scoped copies of response fields
(``<stepId>_<field>``) live in a separate extras store so they cannot be
confused with propagated identifiers.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_ID_FIELDS = (
    "id",
    "accountId",
    "orderId",
    "transactionId",
    "externalAccountId",
    "externalAccountID",
)


class ExecutionContext:
    """Mutable, grow-only state owned by a single execution."""

    def __init__(self, initial: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})
        self._extras: Dict[str, Any] = {}

    # ==================== Generic access ====================

    def get(self, key: str, default: Any = None) -> Any:
        if key in self._values:
            return self._values[key]
        return self._extras.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value

    def set_extra(self, key: str, value: Any) -> None:
        self._extras[key] = value

    def __contains__(self, key: object) -> bool:
        return key in self._values or key in self._extras

    def __len__(self) -> int:
        return len(self.as_dict())

    def __iter__(self) -> Iterator[str]:
        return iter(self.as_dict())

    def as_dict(self) -> Dict[str, Any]:
        """Snapshot of every entry; plain values win over step-scoped extras."""
        merged = dict(self._extras)
        merged.update(self._values)
        return merged

    def fields(self) -> Dict[str, Any]:
        """Plain values only (no step-scoped extras, no access token), for request payloads."""
        return {k: v for k, v in self._values.items() if k != "access_token"}

    # ==================== Well-known fields ====================

    @property
    def access_token(self) -> Optional[str]:
        return self._str("access_token")

    @property
    def account_id(self) -> Optional[str]:
        return self._str("accountId")

    @property
    def external_account_id(self) -> Optional[str]:
        return self._str("externalAccountId") or self._str("externalAccountID")

    @property
    def order_id(self) -> Optional[str]:
        return self._str("orderId")

    @property
    def transaction_id(self) -> Optional[str]:
        return self._str("transactionId")

    def _str(self, key: str) -> Optional[str]:
        value = self._values.get(key)
        return None if value is None else str(value)

    # ==================== Propagation ====================

    def absorb_response(
        self,
        step_id: str,
        data: Mapping[str, Any],
        id_fields: Iterable[str] = DEFAULT_ID_FIELDS,
    ) -> List[str]:
        """
        Copy identifier fields of a response body into the context and store
        every top-level field under ``<step_id>_<field>``.

        Returns the identifier fields that were propagated.
        """
        propagated = []
        for name in id_fields:
            if name in data:
                self._values[name] = data[name]
                propagated.append(name)
                logger.debug(f"Extracted field '{name}' = {data[name]}")

        prefix = f"{step_id}_"
        for key, value in data.items():
            self._extras[prefix + key] = value

        return propagated
