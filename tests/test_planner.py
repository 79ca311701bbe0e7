import pytest

from specflow.config import PlannerConfig
from specflow.models import ConfigurationError, RequestCategory, StageId
from specflow.planner import PLAN_TABLE, StagePlanner, plan, validate_plan

A, R, D, V, T = (
    StageId.ANALYZE,
    StageId.ARCHITECT,
    StageId.DEVELOP,
    StageId.VALIDATE,
    StageId.TEST,
)
DB = StageId.DATABASE


def test_plan_table_is_reproduced() -> None:
    assert plan(RequestCategory.NEW_PROJECT) == (A, R, DB, D, V, T)
    assert plan(RequestCategory.BUG_FIX) == (A, D, V)
    assert plan(RequestCategory.ENHANCEMENT) == (A, R, D, V, T)
    assert plan(RequestCategory.REFACTOR) == (A, D, V)


def test_every_category_plans_analyze_without_duplicates() -> None:
    for category in RequestCategory:
        stages = plan(category)
        assert stages
        assert StageId.ANALYZE in stages
        assert len(set(stages)) == len(stages)


def test_schema_keyword_inserts_database_after_architect() -> None:
    stages = plan(RequestCategory.ENHANCEMENT, {"schema", "add"})

    assert stages == (A, R, DB, D, V, T)
    assert stages.index(DB) == stages.index(R) + 1


def test_database_goes_after_analyze_without_architect() -> None:
    assert plan(RequestCategory.BUG_FIX, {"database"}) == (A, DB, D, V)
    assert plan(RequestCategory.REFACTOR, frozenset({"integration"})) == (A, DB, D, V)


def test_database_is_never_duplicated() -> None:
    assert plan(RequestCategory.NEW_PROJECT, {"schema"}).count(DB) == 1


def test_unrelated_keywords_leave_plan_unchanged() -> None:
    assert plan(RequestCategory.ENHANCEMENT, {"inventory", "create"}) == PLAN_TABLE[
        RequestCategory.ENHANCEMENT
    ]


def test_unknown_category_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        plan("DEPLOY")  # type: ignore[arg-type]


def test_configured_integration_terms() -> None:
    planner = StagePlanner(PlannerConfig(integration_terms=["Kafka"]))

    assert DB in planner.plan(RequestCategory.ENHANCEMENT, {"kafka"})
    assert DB not in planner.plan(RequestCategory.ENHANCEMENT, {"schema"})


@pytest.mark.parametrize(
    "stages",
    [
        (),
        (D, A, V),
        (A, D),
        (A, D, D, V),
        (A, V, D),
    ],
)
def test_validate_plan_rejects_broken_plans(stages: tuple[StageId, ...]) -> None:
    with pytest.raises(ConfigurationError):
        validate_plan(stages)


def test_validate_plan_allows_test_after_validate() -> None:
    validate_plan((A, R, D, V, T))
