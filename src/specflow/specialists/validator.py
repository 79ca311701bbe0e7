from __future__ import annotations

from specflow.backends.base import AgentBackend
from specflow.models import StageId, StageResult, StageStatus
from specflow.specialists.base import SpecialistAgent


class ValidatorAgent(SpecialistAgent):
    """Final quality gate: the stage fails unless the reported score reaches the threshold."""

    role = "validator"
    stage_id = StageId.VALIDATE
    prompt_file = "validator.md"
    fallback_prompt = """
You are the Validator specialist.
Audit the requirements, design, and implementation produced so far.
Classify findings as BLOCKER, MAJOR, MINOR, or SUGGESTION and give an overall quality score.
""".strip()
    instruction = "Validate the work produced so far for: {request}"

    def __init__(
        self,
        backend: AgentBackend,
        *,
        model: str | None = None,
        timeout_seconds: float | None = None,
        quality_threshold: float = 85,
    ) -> None:
        super().__init__(backend, model=model, timeout_seconds=timeout_seconds)
        self.quality_threshold = float(quality_threshold)

    def evaluate(self, content: str) -> StageResult:
        result = super().evaluate(content)
        if result.status is not StageStatus.OK:
            return result
        if result.score is None:
            return StageResult(
                self.stage_id,
                StageStatus.FAILED,
                "Validation did not report a quality score.",
                reason="missing_score",
            )
        if result.score < self.quality_threshold:
            return StageResult(
                self.stage_id,
                StageStatus.FAILED,
                f"Quality score {result.score:g} is below the "
                f"{self.quality_threshold:g} threshold.",
                result.score,
                reason="below_threshold",
            )
        return result
