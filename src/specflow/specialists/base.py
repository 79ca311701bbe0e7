from __future__ import annotations

import re
from importlib import resources
from typing import Any

from specflow.backends.base import AgentBackend
from specflow.executor import StageHandler
from specflow.models import StageContext, StageId, StageResult, StageStatus

SCORE_PATTERN = re.compile(r"\bSCORE\s*[:=]\s*(\d{1,3}(?:\.\d+)?)", re.IGNORECASE)
FAILED_PATTERN = re.compile(r"\bSTATUS\s*[:=]\s*FAILED\b", re.IGNORECASE)
# A finding line such as "BLOCKER: unvalidated input"; "BLOCKER: none" is a clean report.
BLOCKER_PATTERN = re.compile(
    r"^\s*(?:[-*]\s*)?BLOCKER[ \t]*[:\-][ \t]*(?!(?i:none|0|n/?a)\b)\S", re.MULTILINE
)
STATUS_LINE_PATTERN = re.compile(r"^\s*(?:SCORE|STATUS)\s*[:=]", re.IGNORECASE)

REPORT_PROTOCOL = """
Finish your reply with two lines:
SCORE: <0-100 quality score for your output>
STATUS: OK or STATUS: FAILED (FAILED only if the stage cannot be completed)
""".strip()

# Context keys forwarded to the backend, besides earlier specialist outputs.
FORWARDED_KEYS = ("request", "keywords", "category", "plan", "snapshot")


class SpecialistAgent(StageHandler):
    role: str = "specialist"
    stage_id: StageId = StageId.ANALYZE
    prompt_file: str | None = None
    fallback_prompt: str = "You are a software specialist."
    instruction: str = "Work on the following request: {request}"

    def __init__(
        self,
        backend: AgentBackend,
        *,
        model: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self.backend = backend
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.system_prompt = self._load_system_prompt()

    def _load_system_prompt(self) -> str:
        if not self.prompt_file:
            return self.fallback_prompt.strip()
        try:
            prompt_path = resources.files("specflow.prompts").joinpath(self.prompt_file)
            return prompt_path.read_text(encoding="utf-8").strip()
        except (FileNotFoundError, ModuleNotFoundError):
            return self.fallback_prompt.strip()

    @staticmethod
    def output_key(role: str) -> str:
        return f"{role}.output"

    def build_instruction(self, context: StageContext) -> str:
        request = str(context.get("request", "")).strip() or "(no request text)"
        return f"{self.instruction.format(request=request)}\n\n{REPORT_PROTOCOL}"

    def backend_context(self, context: StageContext) -> dict[str, Any]:
        run_context: dict[str, Any] = {
            key: context[key] for key in FORWARDED_KEYS if key in context
        }
        prior_outputs = {
            key.removesuffix(".output"): value
            for key, value in context.items()
            if key.endswith(".output")
        }
        if prior_outputs:
            run_context["prior_outputs"] = prior_outputs
        if self.model:
            run_context["model"] = self.model
        return run_context

    @staticmethod
    def _summary(content: str) -> str:
        for line in content.splitlines():
            stripped = line.strip()
            if stripped and not STATUS_LINE_PATTERN.match(stripped):
                return stripped[:200]
        return ""

    @staticmethod
    def parse_score(content: str) -> float | None:
        matches = SCORE_PATTERN.findall(content)
        if not matches:
            return None
        return min(100.0, max(0.0, float(matches[-1])))

    def evaluate(self, content: str) -> StageResult:
        score = self.parse_score(content)
        summary = self._summary(content) or f"{self.role} produced no output."
        if not content:
            return StageResult(
                self.stage_id, StageStatus.FAILED, summary, score, reason="empty_output"
            )
        if FAILED_PATTERN.search(content) or BLOCKER_PATTERN.search(content):
            return StageResult(
                self.stage_id, StageStatus.FAILED, summary, score, reason="StageFailure"
            )
        return StageResult(self.stage_id, StageStatus.OK, summary, score)

    async def handle(self, context: StageContext) -> StageResult:
        chunks: list[str] = []
        async for chunk in self.backend.execute(
            system_prompt=self.system_prompt,
            user_prompt=self.build_instruction(context),
            context=self.backend_context(context),
        ):
            chunks.append(chunk)
        content = "".join(chunks).strip()
        context.set(self.output_key(self.role), content)
        return self.evaluate(content)
