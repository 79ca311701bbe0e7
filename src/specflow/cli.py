from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import click

from specflow.backends import ClaudeCodeBackend, CodexBackend, ResilientBackend, RetryPolicy
from specflow.config import BackendName, SpecflowConfig, load_config, save_config
from specflow.engine import WorkflowEngine
from specflow.models import ConfigurationError
from specflow.report import render_text
from specflow.specialists import build_specialists
from specflow.state import ProjectStateStore, StateError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Runtime:
    repo_root: Path
    config_path: Path
    config: SpecflowConfig
    store: ProjectStateStore


def _resolve_config_path(repo_root: Path, config_value: str) -> Path:
    config_path = Path(config_value)
    if not config_path.is_absolute():
        config_path = repo_root / config_path
    return config_path.resolve()


def _load_runtime(config_value: str) -> Runtime:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_config_path(repo_root, config_value)
    try:
        config = load_config(config_path)
    except ConfigurationError as exc:
        raise click.ClickException(str(exc)) from exc
    store = ProjectStateStore(
        repo_root,
        docs_dir=config.state.docs_dir,
        state_dir=config.state.state_dir,
    )
    return Runtime(repo_root=repo_root, config_path=config_path, config=config, store=store)


def _build_single_backend(
    backend_name: BackendName, repo_root: Path
) -> CodexBackend | ClaudeCodeBackend:
    if backend_name == "codex":
        return CodexBackend(working_directory=repo_root)
    return ClaudeCodeBackend(working_directory=repo_root)


def _log_backend_event(event: dict[str, Any]) -> None:
    logger.debug("backend event: %s", event)


def _build_backend(config: SpecflowConfig, repo_root: Path) -> ResilientBackend:
    policy = RetryPolicy(
        max_retries=max(0, int(config.backend.max_retries)),
        backoff_seconds=max(0.0, float(config.backend.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.backend.timeout_seconds)),
    )
    return ResilientBackend(
        primary_name=config.backend.primary,
        primary_backend=_build_single_backend(config.backend.primary, repo_root),
        fallback_name=config.backend.fallback,
        fallback_backend=_build_single_backend(config.backend.fallback, repo_root),
        retry_policy=policy,
        event_hook=_log_backend_event,
    )


def _build_engine(runtime: Runtime) -> WorkflowEngine:
    backend = _build_backend(runtime.config, runtime.repo_root)
    return WorkflowEngine(build_specialists(backend, runtime.config), runtime.config)


config_option = click.option(
    "--config", "config_value", default="specflow.toml", show_default=True
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Classify requests and dispatch them through specialist stages."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("init")
@click.option("--backend", type=click.Choice(["codex", "claude"]), default=None)
@config_option
def init_command(backend: str | None, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    config = runtime.config
    if backend:
        config.backend.primary = backend  # type: ignore[assignment]
    save_config(runtime.config_path, config)
    runtime.store.docs_dir.mkdir(parents=True, exist_ok=True)
    runtime.store.state_dir.mkdir(parents=True, exist_ok=True)

    click.echo(f"Initialized specflow in {runtime.repo_root}")
    click.echo(f"Config: {runtime.config_path}")
    click.echo(f"Backend: {config.backend.primary}")


@cli.command("classify")
@click.argument("text")
@config_option
def classify_command(text: str, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    engine = WorkflowEngine({}, runtime.config)
    try:
        snapshot = runtime.store.load_snapshot()
    except StateError as exc:
        raise click.ClickException(str(exc)) from exc
    request = engine.to_request(text)
    category = engine.classifier.classify(request, snapshot)
    click.echo(f"Category: {category.value}")
    click.echo("Keywords: " + (", ".join(sorted(request.detected_keywords)) or "-"))


@cli.command("plan")
@click.argument("text")
@config_option
def plan_command(text: str, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    engine = WorkflowEngine({}, runtime.config)
    try:
        _, category, plan = engine.prepare(text, runtime.store.load_snapshot())
    except (ConfigurationError, StateError) as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Category: {category.value}")
    click.echo("Plan: " + " -> ".join(stage.value for stage in plan))


@cli.command("run")
@click.argument("text")
@click.option("--json", "as_json", is_flag=True, default=False)
@click.option("--no-record", is_flag=True, default=False, help="Do not store the iteration.")
@config_option
@click.pass_context
def run_command(
    ctx: click.Context, text: str, as_json: bool, no_record: bool, config_value: str
) -> None:
    runtime = _load_runtime(config_value)
    engine = _build_engine(runtime)
    try:
        snapshot = runtime.store.load_snapshot()
        report = asyncio.run(engine.run(text, snapshot))
    except (ConfigurationError, StateError) as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
    else:
        click.echo(render_text(report))

    if not no_record:
        try:
            iteration_id = runtime.store.record_iteration(report, request_text=text)
        except StateError as exc:
            raise click.ClickException(str(exc)) from exc
        if not as_json:
            click.echo(f"Iteration: {iteration_id}")

    if not report.passed:
        ctx.exit(1)


@cli.command("status")
@config_option
def status_command(config_value: str) -> None:
    runtime = _load_runtime(config_value)
    try:
        payload = {
            "snapshot": runtime.store.load_snapshot().to_dict(),
            "iterations": runtime.store.get_iterations()[-5:],
        }
    except StateError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))


@cli.group("issue")
def issue_group() -> None:
    """Maintain the list of known issues."""


@issue_group.command("add")
@click.argument("issue_id")
@config_option
def issue_add_command(issue_id: str, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    try:
        runtime.store.add_issue(issue_id)
    except StateError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Tracking issue {issue_id}")


@issue_group.command("resolve")
@click.argument("issue_id")
@config_option
def issue_resolve_command(issue_id: str, config_value: str) -> None:
    runtime = _load_runtime(config_value)
    try:
        found = runtime.store.resolve_issue(issue_id)
    except StateError as exc:
        raise click.ClickException(str(exc)) from exc
    if not found:
        raise click.ClickException(f"Issue not found: {issue_id}")
    click.echo(f"Resolved issue {issue_id}")
