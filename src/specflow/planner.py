from __future__ import annotations

import logging
from collections.abc import Iterable

from specflow.config import PlannerConfig, SpecflowConfig
from specflow.models import ConfigurationError, RequestCategory, StageId, StagePlan

logger = logging.getLogger(__name__)

PLAN_TABLE: dict[RequestCategory, StagePlan] = {
    RequestCategory.NEW_PROJECT: (
        StageId.ANALYZE,
        StageId.ARCHITECT,
        StageId.DATABASE,
        StageId.DEVELOP,
        StageId.VALIDATE,
        StageId.TEST,
    ),
    RequestCategory.BUG_FIX: (
        StageId.ANALYZE,
        StageId.DEVELOP,
        StageId.VALIDATE,
    ),
    RequestCategory.ENHANCEMENT: (
        StageId.ANALYZE,
        StageId.ARCHITECT,
        StageId.DEVELOP,
        StageId.VALIDATE,
        StageId.TEST,
    ),
    RequestCategory.REFACTOR: (
        StageId.ANALYZE,
        StageId.DEVELOP,
        StageId.VALIDATE,
    ),
}

# Stages allowed after VALIDATE in a plan.
POST_VALIDATION_STAGES = frozenset({StageId.TEST})


def validate_plan(plan: StagePlan) -> None:
    if not plan:
        raise ConfigurationError("Stage plan is empty.")
    if len(set(plan)) != len(plan):
        raise ConfigurationError(
            "Stage plan repeats a stage: " + ", ".join(stage.value for stage in plan)
        )
    if plan[0] is not StageId.ANALYZE:
        raise ConfigurationError("Stage plan must start with ANALYZE.")
    if StageId.VALIDATE not in plan:
        raise ConfigurationError("Stage plan must include VALIDATE.")
    trailing = plan[plan.index(StageId.VALIDATE) + 1 :]
    unexpected = [stage.value for stage in trailing if stage not in POST_VALIDATION_STAGES]
    if unexpected:
        raise ConfigurationError(
            "Only TEST may follow VALIDATE; found: " + ", ".join(unexpected)
        )


class StagePlanner:
    def __init__(self, config: PlannerConfig | None = None) -> None:
        self.integration_terms = frozenset(
            term.strip().lower() for term in (config or PlannerConfig()).integration_terms
        )

    @classmethod
    def from_config(cls, config: SpecflowConfig) -> StagePlanner:
        return cls(config.planner)

    def needs_database(self, detected_keywords: Iterable[str]) -> bool:
        return any(keyword.lower() in self.integration_terms for keyword in detected_keywords)

    def plan(
        self,
        category: RequestCategory,
        detected_keywords: Iterable[str] = (),
    ) -> StagePlan:
        try:
            stages = list(PLAN_TABLE[RequestCategory(category)])
        except (KeyError, ValueError) as exc:
            raise ConfigurationError(f"Unrecognized request category: {category!r}") from exc

        if StageId.DATABASE not in stages and self.needs_database(detected_keywords):
            anchor = StageId.ARCHITECT if StageId.ARCHITECT in stages else StageId.ANALYZE
            stages.insert(stages.index(anchor) + 1, StageId.DATABASE)

        plan: StagePlan = tuple(stages)
        validate_plan(plan)
        logger.debug(
            "Planned %s: %s", RequestCategory(category).value, [s.value for s in plan]
        )
        return plan


_default_planner = StagePlanner()


def plan(category: RequestCategory, detected_keywords: Iterable[str] = ()) -> StagePlan:
    return _default_planner.plan(category, detected_keywords)
