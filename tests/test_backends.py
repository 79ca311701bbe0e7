import asyncio
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

import pytest

from specflow.backends import RetryPolicy
from specflow.backends.base import AgentBackend, BackendExecutionError, BackendProcessError
from specflow.backends.claude import ClaudeCodeBackend
from specflow.backends.codex import CodexBackend
from specflow.backends.resilient import ResilientBackend


class AlwaysFailBackend(AgentBackend):
    def __init__(self, *, retriable: bool = True) -> None:
        self.retriable = retriable
        self.calls = 0

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt, context
        self.calls += 1
        raise BackendExecutionError("boom", backend="fake", retriable=self.retriable)
        yield ""  # pragma: no cover


class SuccessBackend(AgentBackend):
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt, context
        yield "o"
        yield "k"


class SlowBackend(AgentBackend):
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        _ = system_prompt, user_prompt, context
        await asyncio.sleep(5)
        yield "late"


class FakeStdout:
    def __init__(self, lines: list[bytes]) -> None:
        self._lines = lines
        self._index = 0

    def __aiter__(self) -> "FakeStdout":
        return self

    async def __anext__(self) -> bytes:
        if self._index >= len(self._lines):
            raise StopAsyncIteration
        line = self._lines[self._index]
        self._index += 1
        return line


class FakeStderr:
    def __init__(self, payload: bytes = b"") -> None:
        self.payload = payload

    async def read(self) -> bytes:
        return self.payload


class FakeProcess:
    def __init__(self, lines: list[bytes], return_code: int = 0, stderr: bytes = b"") -> None:
        self.stdout = FakeStdout(lines)
        self.stderr = FakeStderr(stderr)
        self.return_code = return_code
        self.returncode: int | None = None

    async def wait(self) -> int:
        self.returncode = self.return_code
        return self.return_code


class HangingStdout:
    def __aiter__(self) -> "HangingStdout":
        return self

    async def __anext__(self) -> bytes:
        await asyncio.sleep(30)
        return b""


class HangingProcess:
    def __init__(self) -> None:
        self.stdout = HangingStdout()
        self.stderr = FakeStderr()
        self.returncode: int | None = None
        self.killed = False

    def kill(self) -> None:
        self.killed = True

    async def wait(self) -> int:
        self.returncode = -9
        return -9


def _collect(backend: AgentBackend, context: dict[str, Any] | None = None) -> str:
    async def _run() -> str:
        chunks: list[str] = []
        async for chunk in backend.execute("system", "user", context or {}):
            chunks.append(chunk)
        return "".join(chunks)

    return asyncio.run(_run())


def _patch_subprocess(
    monkeypatch: pytest.MonkeyPatch, process: FakeProcess, captured: dict[str, Any]
) -> None:
    async def fake_create_subprocess_exec(*args: Any, **kwargs: Any) -> FakeProcess:
        captured["args"] = list(args)
        captured["kwargs"] = kwargs
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", fake_create_subprocess_exec)


def test_codex_build_command_shape() -> None:
    backend = CodexBackend(binary="codex", working_directory=Path("."))
    command = backend.build_command(
        system_prompt="system",
        user_prompt="implement feature",
        context={"request": "x", "model": "gpt-5-codex"},
    )

    assert command[0:2] == ["codex", "exec"]
    assert "--json" in command
    assert command[command.index("-m") + 1] == "gpt-5-codex"
    assert any(part.startswith("instructions=") for part in command)
    assert "implement feature" in command[-1]
    assert "Context JSON:" in command[-1]
    assert "gpt-5-codex" not in command[-1]


def test_claude_build_command_shape() -> None:
    backend = ClaudeCodeBackend(binary="claude", working_directory=Path("."))
    command = backend.build_command("implement feature", model="claude-sonnet-4-5")

    assert command[0:3] == ["claude", "-p", "implement feature"]
    assert "stream-json" in command
    assert command[-2:] == ["--model", "claude-sonnet-4-5"]


def test_resilient_backend_fallback_and_retry_events() -> None:
    events: list[dict[str, Any]] = []
    primary = AlwaysFailBackend()
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=primary,
        fallback_name="fallback",
        fallback_backend=SuccessBackend(),
        retry_policy=RetryPolicy(max_retries=1, backoff_seconds=0.0, timeout_seconds=5.0),
        event_hook=events.append,
    )

    assert _collect(backend) == "ok"
    assert primary.calls == 2
    event_names = [event["event"] for event in events]
    assert "backend_retry" in event_names
    assert "backend_failover_start" in event_names
    assert "backend_fallback_success" in event_names


def test_resilient_backend_skips_retry_for_non_retriable_errors() -> None:
    events: list[dict[str, Any]] = []
    primary = AlwaysFailBackend(retriable=False)
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=primary,
        fallback_name="fallback",
        fallback_backend=SuccessBackend(),
        retry_policy=RetryPolicy(max_retries=3, backoff_seconds=0.0, timeout_seconds=5.0),
        event_hook=events.append,
    )

    assert _collect(backend) == "ok"
    assert primary.calls == 1
    assert "backend_retry" not in [event["event"] for event in events]


def test_resilient_backend_times_out_and_fails_over() -> None:
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=SlowBackend(),
        fallback_name="fallback",
        fallback_backend=SuccessBackend(),
        retry_policy=RetryPolicy(max_retries=0, backoff_seconds=0.0, timeout_seconds=0.05),
    )

    assert _collect(backend) == "ok"


def test_resilient_backend_raises_when_all_attempts_fail() -> None:
    backend = ResilientBackend(
        primary_name="primary",
        primary_backend=AlwaysFailBackend(),
        fallback_name="fallback",
        fallback_backend=AlwaysFailBackend(),
        retry_policy=RetryPolicy(max_retries=0, backoff_seconds=0.0, timeout_seconds=5.0),
    )

    with pytest.raises(BackendExecutionError, match="All backend attempts failed"):
        _collect(backend)


def test_codex_backend_streams_json_content(monkeypatch: pytest.MonkeyPatch) -> None:
    events: list[dict[str, Any]] = []
    captured: dict[str, Any] = {}
    process = FakeProcess(
        [
            b"{\"type\":\"response.output_text.delta\",\"content\":\"hello\"}\n",
            b"noise-before-json\n",
            b"{\"type\":\"item\",\n",
            b"\"message\":{\"content\":\" world\"}}\n",
            b"{\"type\":\"response.completed\"}\n",
        ]
    )
    _patch_subprocess(monkeypatch, process, captured)

    output = _collect(CodexBackend(event_hook=events.append))

    assert output == "hello world"
    assert captured["args"][0:2] == ["codex", "exec"]
    event_names = [event["event"] for event in events]
    assert event_names[0] == "cli_start"
    assert "json_parse_fallback" in event_names
    assert event_names[-1] == "cli_exit"
    assert all(event["backend"] == "codex" for event in events)


def test_claude_backend_keeps_plain_lines_and_passes_prompt_file(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    captured: dict[str, Any] = {}
    process = FakeProcess(
        [
            b"{\"type\":\"assistant\",\"content\":[{\"text\":\"Plan\"}]}\n",
            b" ready\n",
        ]
    )
    _patch_subprocess(monkeypatch, process, captured)

    output = _collect(ClaudeCodeBackend(), {"request": "Fix bug", "model": "claude-opus"})

    assert output == "Planready"
    assert captured["kwargs"]["env"]["CLAUDE_MD"].endswith(".md")
    assert "--model" in captured["args"]
    assert "Context JSON:" in captured["args"][2]


def test_nonzero_exit_raises_execution_error(monkeypatch: pytest.MonkeyPatch) -> None:
    _patch_subprocess(monkeypatch, FakeProcess([], return_code=2, stderr=b"quota"), {})

    with pytest.raises(BackendExecutionError) as excinfo:
        _collect(CodexBackend())
    assert excinfo.value.exit_code == 2
    assert "quota" in str(excinfo.value)


def test_missing_binary_is_not_retriable(monkeypatch: pytest.MonkeyPatch) -> None:
    async def missing(*args: Any, **kwargs: Any) -> FakeProcess:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(asyncio, "create_subprocess_exec", missing)

    with pytest.raises(BackendProcessError) as excinfo:
        _collect(ClaudeCodeBackend(binary="claude-missing"))
    assert excinfo.value.retriable is False


def test_timed_out_cli_process_is_killed(monkeypatch: pytest.MonkeyPatch) -> None:
    spawned: list[HangingProcess] = []

    async def spawn(*args: Any, **kwargs: Any) -> HangingProcess:
        process = HangingProcess()
        spawned.append(process)
        return process

    monkeypatch.setattr(asyncio, "create_subprocess_exec", spawn)
    events: list[dict[str, Any]] = []
    backend = ResilientBackend(
        primary_name="codex",
        primary_backend=CodexBackend(event_hook=events.append),
        fallback_name="claude",
        fallback_backend=ClaudeCodeBackend(),
        retry_policy=RetryPolicy(max_retries=1, backoff_seconds=0.0, timeout_seconds=0.05),
    )

    with pytest.raises(BackendExecutionError, match="All backend attempts failed"):
        _collect(backend)

    assert len(spawned) == 4
    assert all(process.killed and process.returncode == -9 for process in spawned)
    assert [event["event"] for event in events].count("cli_killed") == 2
