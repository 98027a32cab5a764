# process_tester/process_types.py
"""
Shared types, enums, dataclasses and exceptions for the process tester.

A ProcessDefinition is produced once by the parser and never mutated.
An Execution owns an append-only list of StepResults and is finalized
exactly once (COMPLETED or FAILED).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ==================== Enums ====================

class StepKind(str, Enum):
    """Kind of process step."""
    SERVICE_CALL = "SERVICE_CALL"


class HttpMethod(str, Enum):
    """HTTP methods a step may issue."""
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["HttpMethod"]:
        """Return the method for a verb string, or None if it is not one we issue."""
        if not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None

    @property
    def has_body(self) -> bool:
        return self in (HttpMethod.POST, HttpMethod.PUT, HttpMethod.PATCH)


class StepStatus(str, Enum):
    """Outcome of a single step."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    VALIDATION_ERROR = "VALIDATION_ERROR"


class ExecutionStatus(str, Enum):
    """Lifecycle of an execution."""
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ExecutionMode(str, Enum):
    """Target API flavour: plain TLS or the GOST-TLS gateway."""
    STANDARD = "STANDARD"
    GOST = "GOST"


# ==================== Exceptions ====================

class ProcessTesterError(Exception):
    """Base exception for the process tester."""
    pass


class ProcessParseError(ProcessTesterError):
    """Diagram text could not be turned into a ProcessDefinition."""
    pass


class CredentialError(ProcessTesterError):
    """Bearer token could not be obtained."""
    pass


class ConfigurationError(ProcessTesterError):
    """Runtime configuration is invalid."""
    pass


# ==================== Process Definition ====================

@dataclass(frozen=True)
class Step:
    """One API call (or non-API marker) of a process."""
    step_id: str
    name: str
    order: int
    kind: StepKind = StepKind.SERVICE_CALL
    method: Optional[HttpMethod] = None
    endpoint: Optional[str] = None
    schema_ref: Optional[str] = None  # raw api.spec descriptor blob

    @property
    def is_api_call(self) -> bool:
        return self.method is not None and bool(self.endpoint)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step_id,
            "name": self.name,
            "order": self.order,
            "kind": self.kind.value,
            "method": self.method.value if self.method else None,
            "endpoint": self.endpoint,
        }


@dataclass(frozen=True)
class ProcessDefinition:
    """Ordered list of steps parsed from a diagram."""
    name: str
    source: str
    steps: Tuple[Step, ...] = ()
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
        }


# ==================== Execution ====================

@dataclass(frozen=True)
class StepResult:
    """Recorded outcome of one step. Never mutated once appended."""
    step: Step
    order: int
    status: StepStatus
    request_payload: Optional[str] = None
    response_payload: Optional[str] = None
    http_status: Optional[int] = None
    error_message: Optional[str] = None
    validation_errors: Tuple[str, ...] = ()
    duration_ms: int = 0
    executed_at: datetime = field(default_factory=datetime.now)

    @property
    def succeeded(self) -> bool:
        return self.status == StepStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step_id": self.step.step_id,
            "step_name": self.step.name,
            "order": self.order,
            "status": self.status.value,
            "request_payload": self.request_payload,
            "response_payload": self.response_payload,
            "http_status": self.http_status,
            "error_message": self.error_message,
            "validation_errors": list(self.validation_errors),
            "duration_ms": self.duration_ms,
            "executed_at": self.executed_at.isoformat(),
        }


@dataclass
class Execution:
    """One run of a ProcessDefinition."""
    process: ProcessDefinition
    mode: ExecutionMode = ExecutionMode.STANDARD
    status: ExecutionStatus = ExecutionStatus.RUNNING
    step_results: List[StepResult] = field(default_factory=list)
    error_summary: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None

    def record(self, result: StepResult) -> None:
        """Append a step result."""
        self.step_results.append(result)

    def finish(self, status: ExecutionStatus, error_summary: Optional[str] = None) -> None:
        """Finalize the execution."""
        self.status = status
        self.error_summary = error_summary
        self.completed_at = datetime.now()

    @property
    def failed_results(self) -> List[StepResult]:
        return [r for r in self.step_results if not r.succeeded]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "process": self.process.name,
            "mode": self.mode.value,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_summary": self.error_summary,
            "steps": [r.to_dict() for r in self.step_results],
        }


@dataclass(frozen=True)
class CachedToken:
    """Bearer token plus its absolute expiry (clock seconds)."""
    token: str
    expires_at: float
