from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

from specflow.backends.base import BackendExecutionError, BackendProcessError

StreamEventHook = Callable[[dict[str, Any]], None]


def extract_content(event: dict[str, Any]) -> str:
    content = event.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict):
                text = item.get("text")
                if isinstance(text, str):
                    parts.append(text)
        return "".join(parts)

    delta = event.get("delta")
    if isinstance(delta, str):
        return delta

    message = event.get("message")
    if isinstance(message, str):
        return message
    if isinstance(message, dict):
        return extract_content(message)

    result = event.get("result")
    if isinstance(result, str):
        return result
    return ""


def appears_partial_json(raw: str) -> bool:
    return raw.count("{") > raw.count("}") or raw.count("[") > raw.count("]")


def render_user_prompt(user_prompt: str, context: dict[str, Any]) -> str:
    if not context:
        return user_prompt
    return (
        f"{user_prompt}\n\nContext JSON:\n"
        f"{json.dumps(context, ensure_ascii=False, indent=2, default=str)}"
    )


async def stream_json_lines(
    command: list[str],
    *,
    backend: str,
    working_directory: Path | None = None,
    env: dict[str, str] | None = None,
    keep_plain_lines: bool = True,
    event_hook: StreamEventHook | None = None,
) -> AsyncIterator[str]:
    """Spawn ``command`` and yield the text carried by its JSON-lines output.

    Lines that are not JSON are yielded verbatim when ``keep_plain_lines``
    is set and dropped otherwise. A JSON object split across several
    lines is buffered until it parses.
    """

    def _emit(payload: dict[str, Any]) -> None:
        if event_hook is not None:
            event_hook({"backend": backend, **payload})

    _emit({"event": "cli_start", "command": command[:3]})
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(working_directory) if working_directory else None,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise BackendProcessError(
            f"{backend} binary not found: {command[0]}",
            backend=backend,
            retriable=False,
        ) from exc

    try:
        if process.stdout is None:
            raise BackendProcessError(
                f"{backend} backend did not expose stdout.", backend=backend, retriable=False
            )
        parse_buffer = ""
        async for raw_line in process.stdout:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if not line:
                continue
            candidate = f"{parse_buffer}{line}" if parse_buffer else line
            try:
                event = json.loads(candidate)
                parse_buffer = ""
            except json.JSONDecodeError:
                if appears_partial_json(candidate):
                    parse_buffer = candidate
                    continue
                parse_buffer = ""
                _emit({"event": "json_parse_fallback", "line": line[:200]})
                if keep_plain_lines:
                    yield line
                continue

            if not isinstance(event, dict):
                continue
            content = extract_content(event)
            if content:
                yield content

        if parse_buffer and keep_plain_lines:
            yield parse_buffer

        return_code = await process.wait()
        stderr_output = ""
        if process.stderr is not None:
            stderr_bytes = await process.stderr.read()
            stderr_output = stderr_bytes.decode("utf-8", errors="replace").strip()
    finally:
        # Consumer cancelled or stopped early: the child must not outlive the stream.
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            _emit({"event": "cli_killed"})

    _emit({"event": "cli_exit", "exit_code": return_code})
    if return_code != 0:
        raise BackendExecutionError(
            f"{backend} backend failed with exit code {return_code}: {stderr_output}",
            backend=backend,
            exit_code=return_code,
            retriable=True,
        )
