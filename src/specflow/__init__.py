from specflow.classifier import RequestClassifier, build_request, classify
from specflow.engine import WorkflowEngine
from specflow.executor import FunctionStageHandler, StageExecutor, StageHandler
from specflow.models import (
    ConfigurationError,
    ContextClosedError,
    OverallStatus,
    ProjectStateSnapshot,
    Request,
    RequestCategory,
    StageContext,
    StageId,
    StageResult,
    StageStatus,
    WorkflowReport,
)
from specflow.planner import StagePlanner, plan, validate_plan
from specflow.report import build_report, render_text

__version__ = "0.1.0"

__all__ = [
    "ConfigurationError",
    "ContextClosedError",
    "FunctionStageHandler",
    "OverallStatus",
    "ProjectStateSnapshot",
    "Request",
    "RequestCategory",
    "RequestClassifier",
    "StageContext",
    "StageExecutor",
    "StageHandler",
    "StageId",
    "StagePlanner",
    "StageResult",
    "StageStatus",
    "WorkflowEngine",
    "WorkflowReport",
    "__version__",
    "build_report",
    "build_request",
    "classify",
    "plan",
    "render_text",
    "validate_plan",
]
