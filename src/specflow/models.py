from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ConfigurationError(ValueError):
    """Raised when a workflow cannot be set up; aborts the run before any stage executes."""


class ContextClosedError(RuntimeError):
    """Raised when a stage writes to the context after its turn has ended."""


class RequestCategory(str, Enum):
    NEW_PROJECT = "NEW_PROJECT"
    BUG_FIX = "BUG_FIX"
    ENHANCEMENT = "ENHANCEMENT"
    REFACTOR = "REFACTOR"


class StageId(str, Enum):
    ANALYZE = "ANALYZE"
    ARCHITECT = "ARCHITECT"
    DATABASE = "DATABASE"
    DEVELOP = "DEVELOP"
    VALIDATE = "VALIDATE"
    TEST = "TEST"

    @classmethod
    def parse(cls, value: str | StageId) -> StageId:
        if isinstance(value, StageId):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise ConfigurationError(f"Unknown stage: {value}") from exc


class StageStatus(str, Enum):
    OK = "OK"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class OverallStatus(str, Enum):
    PASSED = "PASSED"
    FAILED = "FAILED"


StagePlan = tuple[StageId, ...]

# Skip reasons written by the executor.
REASON_HANDLER_MISSING = "handler_missing"
REASON_FAIL_FAST = "fail_fast"
REASON_CANCELLED = "cancelled"
REASON_TIMEOUT = "TimeoutError"

# Context keys ending with this suffix are written only by the executor.
RESULT_SUFFIX = ".result"


@dataclass(frozen=True, slots=True)
class Request:
    raw_text: str
    detected_keywords: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        if not isinstance(self.detected_keywords, frozenset):
            object.__setattr__(self, "detected_keywords", frozenset(self.detected_keywords))


@dataclass(frozen=True, slots=True)
class ProjectStateSnapshot:
    has_prior_docs: bool = False
    prior_iteration_ids: tuple[str, ...] = ()
    known_issues: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "prior_iteration_ids", tuple(self.prior_iteration_ids))
        object.__setattr__(self, "known_issues", frozenset(self.known_issues))

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_prior_docs": self.has_prior_docs,
            "prior_iteration_ids": list(self.prior_iteration_ids),
            "known_issues": sorted(self.known_issues),
        }


@dataclass(slots=True)
class StageResult:
    stage_id: StageId
    status: StageStatus
    summary: str = ""
    score: float | None = None
    reason: str | None = None

    def __post_init__(self) -> None:
        self.stage_id = StageId.parse(self.stage_id)
        self.status = StageStatus(self.status)
        if self.score is not None:
            score = float(self.score)
            if not 0.0 <= score <= 100.0:
                raise ValueError(f"Stage score must be within [0, 100], got {self.score}")
            self.score = score

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage_id": self.stage_id.value,
            "status": self.status.value,
            "summary": self.summary,
            "score": self.score,
            "reason": self.reason,
        }


@dataclass(slots=True)
class WorkflowReport:
    category: RequestCategory
    plan: StagePlan
    results: list[StageResult] = field(default_factory=list)
    overall_status: OverallStatus = OverallStatus.FAILED
    overall_score: float = 0.0

    @property
    def passed(self) -> bool:
        return self.overall_status is OverallStatus.PASSED

    def result_for(self, stage_id: StageId) -> StageResult | None:
        for result in self.results:
            if result.stage_id is stage_id:
                return result
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "plan": [stage.value for stage in self.plan],
            "results": [result.to_dict() for result in self.results],
            "overall_status": self.overall_status.value,
            "overall_score": self.overall_score,
        }


class StageContext(Mapping[str, Any]):
    """Append-only key/value store threaded through a single workflow run.

    Keys can be added but never removed or rebound, so every stage sees
    exactly what earlier stages wrote. The writer of each key is tracked.

    Stages write through a view from :meth:`writer_for`. The view shares the
    run's data and is revoked when the stage ends, so a handler that outlives
    its timeout cannot touch what later stages see.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = {}
        self._writers: dict[str, str | None] = {}
        self.stage: StageId | None = None
        self._revoked = False
        for key, value in (initial or {}).items():
            self.set(key, value)

    def writer_for(self, stage_id: StageId) -> StageContext:
        view = StageContext.__new__(StageContext)
        view._data = self._data
        view._writers = self._writers
        view.stage = stage_id
        view._revoked = False
        return view

    def revoke(self) -> None:
        self._revoked = True

    @property
    def revoked(self) -> bool:
        return self._revoked

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __setitem__(self, key: str, value: Any) -> None:
        self.set(key, value)

    def __delitem__(self, key: str) -> None:
        raise TypeError("StageContext is append-only; keys cannot be removed.")

    def set(self, key: str, value: Any) -> None:
        if self._revoked:
            raise ContextClosedError(
                f"Stage {self.stage.value if self.stage else '?'} can no longer write "
                f"to the context (key {key!r})."
            )
        if self.stage is not None and key.endswith(RESULT_SUFFIX):
            raise KeyError(f"Context key is reserved for stage results: {key}")
        if key in self._data:
            raise KeyError(f"Context key already written: {key}")
        self._data[key] = value
        self._writers[key] = self.stage.value if self.stage else None

    def written_by(self, key: str) -> str | None:
        return self._writers[key]

    def to_dict(self) -> dict[str, Any]:
        return dict(self._data)

    def __repr__(self) -> str:
        return f"StageContext({self._data!r})"
