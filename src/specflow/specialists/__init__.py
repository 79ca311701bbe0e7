from specflow.backends.base import AgentBackend
from specflow.config import SpecflowConfig
from specflow.models import StageId
from specflow.specialists.analyst import AnalystAgent
from specflow.specialists.architect import ArchitectAgent
from specflow.specialists.base import SpecialistAgent
from specflow.specialists.database import DatabaseAgent
from specflow.specialists.developer import DeveloperAgent
from specflow.specialists.tester import TesterAgent
from specflow.specialists.validator import ValidatorAgent


def build_specialists(
    backend: AgentBackend, config: SpecflowConfig | None = None
) -> dict[StageId, SpecialistAgent]:
    config = config or SpecflowConfig.default()
    model = config.agents.model or None
    return {
        StageId.ANALYZE: AnalystAgent(backend, model=model),
        StageId.ARCHITECT: ArchitectAgent(backend, model=model),
        StageId.DATABASE: DatabaseAgent(backend, model=model),
        StageId.DEVELOP: DeveloperAgent(backend, model=model),
        StageId.VALIDATE: ValidatorAgent(
            backend, model=model, quality_threshold=config.validation.quality_threshold
        ),
        StageId.TEST: TesterAgent(backend, model=model),
    }


__all__ = [
    "AnalystAgent",
    "ArchitectAgent",
    "DatabaseAgent",
    "DeveloperAgent",
    "SpecialistAgent",
    "TesterAgent",
    "ValidatorAgent",
    "build_specialists",
]
