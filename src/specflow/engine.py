from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from uuid import uuid4

from specflow.classifier import RequestClassifier
from specflow.config import SpecflowConfig
from specflow.executor import (
    ExecutorEventHook,
    HandlerFunction,
    StageExecutor,
    StageHandler,
    as_handler,
)
from specflow.models import (
    RESULT_SUFFIX,
    ConfigurationError,
    ProjectStateSnapshot,
    Request,
    RequestCategory,
    StageContext,
    StageId,
    StagePlan,
    WorkflowReport,
)
from specflow.planner import StagePlanner
from specflow.report import build_report

logger = logging.getLogger(__name__)

MANDATORY_STAGES = (StageId.ANALYZE, StageId.VALIDATE)
SEED_KEYS = frozenset({"run_id", "request", "keywords", "category", "plan", "snapshot"})


class WorkflowEngine:
    """Classifies a request, plans its stages, runs them, and reports.

    The engine keeps no per-run state: every call to :meth:`run` builds its
    own context, so independent runs may proceed concurrently.
    """

    def __init__(
        self,
        handlers: Mapping[StageId | str, StageHandler | HandlerFunction],
        config: SpecflowConfig | None = None,
        *,
        executor: StageExecutor | None = None,
        event_hook: ExecutorEventHook | None = None,
    ) -> None:
        self.config = config or SpecflowConfig.default()
        self.handlers: dict[StageId, StageHandler] = {
            StageId.parse(stage): as_handler(handler) for stage, handler in handlers.items()
        }
        self.classifier = RequestClassifier.from_config(self.config)
        self.planner = StagePlanner.from_config(self.config)
        self.executor = executor or StageExecutor.from_config(self.config, event_hook)

    def validate_handlers(self) -> None:
        missing = [stage.value for stage in MANDATORY_STAGES if stage not in self.handlers]
        if missing:
            raise ConfigurationError(
                "Missing handler for mandatory stage(s): " + ", ".join(missing)
            )

    @staticmethod
    def check_fresh_context(context: StageContext) -> None:
        """A context belongs to one run; extra caller keys are fine, run keys are not."""
        used = sorted(
            key for key in context if key in SEED_KEYS or key.endswith(RESULT_SUFFIX)
        )
        if used:
            raise ConfigurationError(
                "Context was already used by a run (found " + ", ".join(used) + ")."
            )

    def to_request(self, request: Request | str | None) -> Request:
        if isinstance(request, Request):
            return request
        return self.classifier.build_request(request)

    def prepare(
        self, request: Request | str | None, snapshot: ProjectStateSnapshot
    ) -> tuple[Request, RequestCategory, StagePlan]:
        resolved = self.to_request(request)
        category = self.classifier.classify(resolved, snapshot)
        plan = self.planner.plan(category, resolved.detected_keywords)
        return resolved, category, plan

    async def run(
        self,
        request: Request | str | None,
        snapshot: ProjectStateSnapshot,
        *,
        context: StageContext | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> WorkflowReport:
        self.validate_handlers()
        if context is not None:
            self.check_fresh_context(context)
        resolved, category, plan = self.prepare(request, snapshot)
        run_id = uuid4().hex[:8]
        logger.info(
            "Run %s: %s -> %s",
            run_id,
            category.value,
            " -> ".join(stage.value for stage in plan),
        )

        run_context = context if context is not None else StageContext()
        seed = {
            "run_id": run_id,
            "request": resolved.raw_text,
            "keywords": sorted(resolved.detected_keywords),
            "category": category.value,
            "plan": [stage.value for stage in plan],
            "snapshot": snapshot.to_dict(),
        }
        for key, value in seed.items():
            run_context.set(key, value)

        results = await self.executor.execute(
            plan, run_context, self.handlers, cancel_event=cancel_event
        )
        report = build_report(category, plan, results)
        logger.info(
            "Run %s finished %s (score %.1f)",
            run_id,
            report.overall_status.value,
            report.overall_score,
        )
        return report
