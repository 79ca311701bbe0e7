from __future__ import annotations

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import replace
from typing import Any

from specflow.config import SpecflowConfig
from specflow.models import (
    REASON_CANCELLED,
    REASON_FAIL_FAST,
    REASON_HANDLER_MISSING,
    REASON_TIMEOUT,
    RESULT_SUFFIX,
    StageContext,
    StageId,
    StagePlan,
    StageResult,
    StageStatus,
)

logger = logging.getLogger(__name__)

ExecutorEventHook = Callable[[dict[str, Any]], None]
HandlerFunction = Callable[[StageContext], StageResult | Awaitable[StageResult]]


class StageHandler(ABC):
    """External implementation backing one stage.

    ``timeout_seconds`` overrides the executor budget for this handler when set.
    """

    timeout_seconds: float | None = None

    @abstractmethod
    async def handle(self, context: StageContext) -> StageResult:
        """Run the stage, reading and appending to ``context``."""


class FunctionStageHandler(StageHandler):
    """Adapts a plain callable into a handler.

    Coroutine functions are awaited directly; blocking functions run in a
    worker thread so the executor timeout still bounds them. A blocking
    function that overruns keeps its thread until it returns, but its
    context view is revoked by then and any late write raises
    :class:`~specflow.models.ContextClosedError`.
    """

    def __init__(self, func: HandlerFunction, *, timeout_seconds: float | None = None) -> None:
        self.func = func
        self.timeout_seconds = timeout_seconds

    async def handle(self, context: StageContext) -> StageResult:
        if inspect.iscoroutinefunction(self.func):
            return await self.func(context)
        outcome = await asyncio.to_thread(self.func, context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    def __repr__(self) -> str:
        name = getattr(self.func, "__name__", repr(self.func))
        return f"FunctionStageHandler({name})"


def as_handler(candidate: StageHandler | HandlerFunction) -> StageHandler:
    if isinstance(candidate, StageHandler):
        return candidate
    if callable(candidate):
        return FunctionStageHandler(candidate)
    raise TypeError(f"Not a stage handler: {candidate!r}")


def result_key(stage_id: StageId) -> str:
    return f"{stage_id.value}{RESULT_SUFFIX}"


class StageExecutor:
    """Runs a stage plan strictly in order with a fail-fast cascade.

    After the first FAILED stage the remaining stages are skipped, except
    those in ``always_run``, which still execute so a planned terminal
    validation always yields a verdict. Cancellation is checked before
    each stage; once requested every remaining stage is skipped.
    """

    def __init__(
        self,
        timeout_seconds: float = 300.0,
        always_run: Iterable[StageId] = (StageId.VALIDATE,),
        event_hook: ExecutorEventHook | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.always_run = frozenset(StageId.parse(stage) for stage in always_run)
        self.event_hook = event_hook

    @classmethod
    def from_config(
        cls, config: SpecflowConfig, event_hook: ExecutorEventHook | None = None
    ) -> StageExecutor:
        return cls(
            timeout_seconds=float(config.executor.timeout_seconds),
            always_run=config.always_run_stages(),
            event_hook=event_hook,
        )

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    def _skip(self, stage_id: StageId, reason: str, summary: str) -> StageResult:
        logger.info("Skipping %s (%s)", stage_id.value, reason)
        self._emit({"event": "stage_skipped", "stage": stage_id.value, "reason": reason})
        return StageResult(stage_id, StageStatus.SKIPPED, summary=summary, reason=reason)

    def _failed(
        self, stage_id: StageId, reason: str, summary: str, elapsed: float
    ) -> StageResult:
        logger.warning("Stage %s failed (%s): %s", stage_id.value, reason, summary)
        self._emit(
            {
                "event": "stage_failed",
                "stage": stage_id.value,
                "reason": reason,
                "error": summary,
                "elapsed_seconds": round(elapsed, 3),
            }
        )
        return StageResult(stage_id, StageStatus.FAILED, summary=summary, reason=reason)

    async def _run_stage(
        self, stage_id: StageId, handler: StageHandler, context: StageContext
    ) -> StageResult:
        timeout = getattr(handler, "timeout_seconds", None) or self.timeout_seconds
        logger.info("Running %s with %s", stage_id.value, type(handler).__name__)
        self._emit({"event": "stage_start", "stage": stage_id.value, "timeout_seconds": timeout})

        started = time.monotonic()
        writer = context.writer_for(stage_id)
        try:
            outcome = await asyncio.wait_for(handler.handle(writer), timeout=timeout)
        except TimeoutError:
            elapsed = time.monotonic() - started
            self._emit(
                {"event": "stage_timeout", "stage": stage_id.value, "timeout_seconds": timeout}
            )
            return self._failed(
                stage_id,
                REASON_TIMEOUT,
                f"Handler exceeded its {timeout:.1f}s budget.",
                elapsed,
            )
        except Exception as exc:
            return self._failed(
                stage_id, type(exc).__name__, str(exc) or repr(exc), time.monotonic() - started
            )
        finally:
            writer.revoke()
        elapsed = time.monotonic() - started

        if not isinstance(outcome, StageResult):
            return self._failed(
                stage_id,
                "InvalidResult",
                f"Handler returned {type(outcome).__name__} instead of StageResult.",
                elapsed,
            )
        if outcome.stage_id is not stage_id:
            outcome = replace(outcome, stage_id=stage_id)
        if outcome.status is StageStatus.FAILED:
            failure = self._failed(
                stage_id, outcome.reason or "StageFailure", outcome.summary, elapsed
            )
            failure.score = outcome.score
            return failure

        logger.info(
            "Stage %s finished with %s in %.2fs", stage_id.value, outcome.status.value, elapsed
        )
        self._emit(
            {
                "event": "stage_complete",
                "stage": stage_id.value,
                "status": outcome.status.value,
                "score": outcome.score,
                "elapsed_seconds": round(elapsed, 3),
            }
        )
        return outcome

    async def execute(
        self,
        plan: StagePlan,
        context: StageContext,
        handlers: Mapping[StageId, StageHandler | HandlerFunction],
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> list[StageResult]:
        results: list[StageResult] = []
        failed = False
        cancelled = False

        for stage_id in plan:
            if not cancelled and cancel_event is not None and cancel_event.is_set():
                cancelled = True
                logger.info("Run cancelled before %s", stage_id.value)
            if cancelled:
                results.append(
                    self._skip(stage_id, REASON_CANCELLED, "Run cancelled before this stage.")
                )
                continue
            if failed and stage_id not in self.always_run:
                results.append(
                    self._skip(stage_id, REASON_FAIL_FAST, "Skipped after an earlier failure.")
                )
                continue

            candidate = handlers.get(stage_id)
            if candidate is None:
                results.append(
                    self._skip(
                        stage_id, REASON_HANDLER_MISSING, "No handler registered for stage."
                    )
                )
                continue

            result = await self._run_stage(stage_id, as_handler(candidate), context)
            context.set(result_key(stage_id), result.to_dict())
            results.append(result)
            if result.status is StageStatus.FAILED:
                failed = True

        return results
