from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from specflow.backends.base import AgentBackend
from specflow.backends.stream import render_user_prompt, stream_json_lines


class ClaudeCodeBackend(AgentBackend):
    def __init__(self, binary: str = "claude", working_directory: Path | None = None) -> None:
        self.binary = binary
        self.working_directory = working_directory

    def build_command(self, user_prompt: str, model: str | None = None) -> list[str]:
        command = [self.binary, "-p", user_prompt, "--output-format", "stream-json", "--verbose"]
        if model:
            command.extend(["--model", model])
        return command

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        model = context.get("model")
        prompt = render_user_prompt(
            user_prompt, {key: value for key, value in context.items() if key != "model"}
        )
        with tempfile.NamedTemporaryFile(mode="w", suffix=".md", encoding="utf-8") as temp_file:
            temp_file.write(system_prompt)
            temp_file.flush()

            env = os.environ.copy()
            env["CLAUDE_MD"] = temp_file.name

            async for chunk in stream_json_lines(
                self.build_command(prompt, model if isinstance(model, str) else None),
                backend="claude",
                working_directory=self.working_directory,
                env=env,
            ):
                yield chunk
