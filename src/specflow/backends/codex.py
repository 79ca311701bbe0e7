from __future__ import annotations

import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

from specflow.backends.base import AgentBackend
from specflow.backends.stream import render_user_prompt, stream_json_lines


class CodexBackend(AgentBackend):
    def __init__(
        self,
        binary: str = "codex",
        working_directory: Path | None = None,
        event_hook: Callable[[dict[str, Any]], None] | None = None,
    ) -> None:
        self.binary = binary
        self.working_directory = working_directory
        self.event_hook = event_hook

    def build_command(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> list[str]:
        requested_model = context.get("model")
        command = [
            self.binary,
            "exec",
            "--json",
            "-c",
            f"instructions={json.dumps(system_prompt, ensure_ascii=False)}",
        ]
        if isinstance(requested_model, str) and requested_model.strip():
            command.extend(["-m", requested_model.strip()])
        command.append(
            render_user_prompt(
                user_prompt, {key: value for key, value in context.items() if key != "model"}
            )
        )
        return command

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        async for chunk in stream_json_lines(
            self.build_command(system_prompt, user_prompt, context),
            backend="codex",
            working_directory=self.working_directory,
            keep_plain_lines=False,
            event_hook=self.event_hook,
        ):
            yield chunk
