from __future__ import annotations

from specflow.models import StageId
from specflow.specialists.base import SpecialistAgent


class DeveloperAgent(SpecialistAgent):
    role = "developer"
    stage_id = StageId.DEVELOP
    prompt_file = "developer.md"
    fallback_prompt = """
You are the Developer specialist.
Implement exactly what was analysed and designed.
Match repository conventions and keep changes focused.
""".strip()
    instruction = "Implement the change for: {request}"
