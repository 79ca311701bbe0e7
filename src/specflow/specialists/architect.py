from __future__ import annotations

from specflow.models import StageId
from specflow.specialists.base import SpecialistAgent


class ArchitectAgent(SpecialistAgent):
    role = "architect"
    stage_id = StageId.ARCHITECT
    prompt_file = "architect.md"
    fallback_prompt = """
You are the Backend Architect specialist.
Design components, interfaces, and data flow for the analysed requirements.
You produce designs, not code.
""".strip()
    instruction = "Design the system architecture for: {request}"
