from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from specflow.models import ConfigurationError, StageId

BackendName = Literal["codex", "claude"]
BACKEND_NAMES = ("codex", "claude")


def _number(name: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number, got {value!r}.")
    return float(value)


@dataclass(slots=True)
class ClassifierConfig:
    new_project_terms: list[str] = field(
        default_factory=lambda: [
            "create",
            "new system",
            "new project",
            "new app",
            "new application",
            "from scratch",
            "greenfield",
            "bootstrap",
            "scaffold",
        ]
    )
    bug_fix_terms: list[str] = field(
        default_factory=lambda: [
            "fix",
            "bug",
            "fails",
            "failing",
            "failure",
            "error",
            "errors",
            "broken",
            "crash",
            "crashes",
            "regression",
            "defect",
            "exception",
        ]
    )
    enhancement_terms: list[str] = field(
        default_factory=lambda: [
            "add",
            "enhance",
            "extend",
            "improve",
            "feature",
            "support",
            "integrate",
            "implement",
            "update",
        ]
    )
    refactor_terms: list[str] = field(
        default_factory=lambda: [
            "refactor",
            "optimize",
            "optimise",
            "restructure",
            "reorganize",
            "clean up",
            "cleanup",
            "simplify",
            "modularize",
            "performance",
        ]
    )
    functional_change_terms: list[str] = field(
        default_factory=lambda: [
            "add",
            "feature",
            "new feature",
            "support",
            "implement",
            "extend",
            "enhance",
        ]
    )


@dataclass(slots=True)
class PlannerConfig:
    integration_terms: list[str] = field(
        default_factory=lambda: [
            "database",
            "schema",
            "integration",
            "migration",
            "sql",
            "postgres",
            "postgresql",
            "mysql",
            "sqlite",
            "orm",
            "data model",
        ]
    )


@dataclass(slots=True)
class ExecutorConfig:
    timeout_seconds: float = 300.0
    always_run: list[str] = field(default_factory=lambda: ["VALIDATE"])


@dataclass(slots=True)
class ValidationConfig:
    quality_threshold: int = 85


@dataclass(slots=True)
class BackendConfig:
    primary: BackendName = "claude"
    fallback: BackendName = "codex"
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 240.0


@dataclass(slots=True)
class AgentsConfig:
    model: str = ""


@dataclass(slots=True)
class StateConfig:
    docs_dir: str = "docs"
    state_dir: str = ".specflow/state"


@dataclass(slots=True)
class SpecflowConfig:
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    planner: PlannerConfig = field(default_factory=PlannerConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    backend: BackendConfig = field(default_factory=BackendConfig)
    agents: AgentsConfig = field(default_factory=AgentsConfig)
    state: StateConfig = field(default_factory=StateConfig)

    @classmethod
    def default(cls) -> SpecflowConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> SpecflowConfig:
        try:
            config = cls(
                classifier=ClassifierConfig(**data.get("classifier", {})),
                planner=PlannerConfig(**data.get("planner", {})),
                executor=ExecutorConfig(**data.get("executor", {})),
                validation=ValidationConfig(**data.get("validation", {})),
                backend=BackendConfig(**data.get("backend", {})),
                agents=AgentsConfig(**data.get("agents", {})),
                state=StateConfig(**data.get("state", {})),
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid configuration: {exc}") from exc
        config.validate()
        return config

    def validate(self) -> None:
        for name in self.executor.always_run:
            StageId.parse(name)
        if _number("executor.timeout_seconds", self.executor.timeout_seconds) <= 0:
            raise ConfigurationError("executor.timeout_seconds must be positive.")
        threshold = _number("validation.quality_threshold", self.validation.quality_threshold)
        if not 0 <= threshold <= 100:
            raise ConfigurationError("validation.quality_threshold must be within 0..100.")
        for name in (self.backend.primary, self.backend.fallback):
            if name not in BACKEND_NAMES:
                raise ConfigurationError(f"Unsupported backend: {name}")
        if _number("backend.max_retries", self.backend.max_retries) < 0:
            raise ConfigurationError("backend.max_retries must not be negative.")
        _number("backend.retry_backoff_seconds", self.backend.retry_backoff_seconds)
        _number("backend.timeout_seconds", self.backend.timeout_seconds)

    def always_run_stages(self) -> frozenset[StageId]:
        return frozenset(StageId.parse(name) for name in self.executor.always_run)

    def to_dict(self) -> dict:
        return {
            "classifier": {
                "new_project_terms": list(self.classifier.new_project_terms),
                "bug_fix_terms": list(self.classifier.bug_fix_terms),
                "enhancement_terms": list(self.classifier.enhancement_terms),
                "refactor_terms": list(self.classifier.refactor_terms),
                "functional_change_terms": list(self.classifier.functional_change_terms),
            },
            "planner": {
                "integration_terms": list(self.planner.integration_terms),
            },
            "executor": {
                "timeout_seconds": self.executor.timeout_seconds,
                "always_run": list(self.executor.always_run),
            },
            "validation": {
                "quality_threshold": self.validation.quality_threshold,
            },
            "backend": {
                "primary": self.backend.primary,
                "fallback": self.backend.fallback,
                "max_retries": self.backend.max_retries,
                "retry_backoff_seconds": self.backend.retry_backoff_seconds,
                "timeout_seconds": self.backend.timeout_seconds,
            },
            "agents": {
                "model": self.agents.model,
            },
            "state": {
                "docs_dir": self.state.docs_dir,
                "state_dir": self.state.state_dir,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0").rstrip(".")
        if not rendered:
            return "0.0"
        return rendered if "." in rendered else f"{rendered}.0"
    if isinstance(value, list):
        return "[" + ", ".join(_toml_value(item) for item in value) + "]"
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: SpecflowConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    section_order = [
        "classifier",
        "planner",
        "executor",
        "validation",
        "backend",
        "agents",
        "state",
    ]
    for section in section_order:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> SpecflowConfig:
    if not path.exists():
        return SpecflowConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}") from exc
    return SpecflowConfig.from_dict(data)


def save_config(path: Path, config: SpecflowConfig) -> None:
    path.write_text(dumps_toml(config), encoding="utf-8")
