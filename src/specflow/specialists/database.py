from __future__ import annotations

from specflow.models import StageId
from specflow.specialists.base import SpecialistAgent


class DatabaseAgent(SpecialistAgent):
    role = "database"
    stage_id = StageId.DATABASE
    prompt_file = "database.md"
    fallback_prompt = """
You are the Database specialist.
Design schemas, migrations, indexes, and integration points for the planned architecture.
""".strip()
    instruction = "Design the data model and integrations for: {request}"
