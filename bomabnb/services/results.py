"""Failure taxonomy and the step report returned by multi-step workflows."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class FailureKind(str, Enum):
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    DATA_INTEGRITY = "data_integrity"
    REMOTE = "remote"
    CONFLICT = "conflict"
    PARTIAL = "partial"
    UNEXPECTED = "unexpected"


@dataclass
class SagaStep:
    name: str
    ok: bool
    error: Optional[str] = None
    compensated: bool = False


@dataclass
class SagaReport:
    """Outcome of an ordered sequence of independently committed steps."""

    name: str
    steps: List[SagaStep] = field(default_factory=list)
    message: str = ""
    failure: Optional[FailureKind] = None

    def record(self, name: str, ok: bool, error: Optional[str] = None) -> SagaStep:
        step = SagaStep(name=name, ok=ok, error=error)
        self.steps.append(step)
        return step

    def step(self, name: str) -> Optional[SagaStep]:
        return next((s for s in self.steps if s.name == name), None)

    @property
    def success(self) -> bool:
        """The primary change stands; a failed trailing notification still counts."""
        return self.failure in (None, FailureKind.PARTIAL)

    @property
    def partial(self) -> bool:
        return self.failure == FailureKind.PARTIAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "partial": self.partial,
            "message": self.message,
            "failure": self.failure.value if self.failure else None,
            "steps": [
                {"name": s.name, "ok": s.ok, "error": s.error, "compensated": s.compensated}
                for s in self.steps
            ],
        }
