from __future__ import annotations

from specflow.models import StageId
from specflow.specialists.base import SpecialistAgent


class AnalystAgent(SpecialistAgent):
    role = "analyst"
    stage_id = StageId.ANALYZE
    prompt_file = "analyst.md"
    fallback_prompt = """
You are the Requirements Analyst specialist.
Turn the request into clear requirements, user stories, and acceptance criteria.
""".strip()
    instruction = "Gather and structure the requirements for: {request}"
