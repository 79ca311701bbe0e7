from __future__ import annotations

from specflow.models import StageId
from specflow.specialists.base import SpecialistAgent


class TesterAgent(SpecialistAgent):
    role = "tester"
    stage_id = StageId.TEST
    prompt_file = "tester.md"
    fallback_prompt = """
You are the Tester/QA specialist.
Design and run tests for happy path, edge cases, and failures.
Report clear pass/fail outcomes.
""".strip()
    instruction = "Write and run tests covering the change for: {request}"
