from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any
from uuid import uuid4

from specflow.models import ProjectStateSnapshot, WorkflowReport

logger = logging.getLogger(__name__)


class StateError(RuntimeError):
    """Raised when persisted project state cannot be read or written."""


class ProjectStateStore:
    """Reads and records the project state a workflow run is based on.

    Documentation lives as Markdown under ``docs_dir``; run history and
    known issues are JSON envelopes under ``state_dir``. The engine only
    ever sees the read-only snapshot returned by :meth:`load_snapshot`.
    """

    NAMESPACES = {"iterations", "issues"}
    SCHEMA_VERSION = 1

    def __init__(
        self,
        root: Path,
        *,
        docs_dir: str = "docs",
        state_dir: str = ".specflow/state",
    ) -> None:
        self.root = root.resolve()
        self.docs_dir = self.root / docs_dir
        self.state_dir = self.root / state_dir
        self.lock_file = self.state_dir / ".lock"

    @staticmethod
    def _utcnow_iso() -> str:
        return datetime.now(UTC).replace(microsecond=0).isoformat()

    @staticmethod
    def _validate_namespace(namespace: str) -> None:
        if namespace not in ProjectStateStore.NAMESPACES:
            raise StateError(f"Unsupported namespace: {namespace}")

    def _state_file(self, namespace: str) -> Path:
        return self.state_dir / f"{namespace}.json"

    @contextmanager
    def _state_lock(self, timeout_seconds: float = 3.0):
        self.state_dir.mkdir(parents=True, exist_ok=True)
        start = time.monotonic()
        while True:
            try:
                fd = os.open(self.lock_file, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                os.write(fd, str(os.getpid()).encode("utf-8"))
                os.close(fd)
                break
            except FileExistsError as exc:
                if time.monotonic() - start > timeout_seconds:
                    raise StateError("Timed out waiting for state lock.") from exc
                time.sleep(0.02)

        try:
            yield
        finally:
            try:
                self.lock_file.unlink()
            except FileNotFoundError:
                pass

    def _read_raw_json(self, namespace: str) -> Any:
        path = self._state_file(namespace)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("Ignoring unreadable state file %s", path)
            return None
        except OSError as exc:
            raise StateError(f"Cannot read {path}: {exc}") from exc

    def _write_raw_json(self, namespace: str, payload: Any) -> None:
        path = self._state_file(namespace)
        serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.state_dir,
                prefix=f".{namespace}-",
                suffix=".tmp",
                delete=False,
            ) as handle:
                handle.write(serialized)
                temp_path = handle.name
            os.replace(temp_path, path)
        except OSError as exc:
            raise StateError(f"Cannot write {path}: {exc}") from exc

    def _normalize_envelope(self, raw_payload: Any, default: Any) -> dict[str, Any]:
        if (
            isinstance(raw_payload, dict)
            and "schema_version" in raw_payload
            and "data" in raw_payload
            and "revision" in raw_payload
        ):
            return {
                "schema_version": int(raw_payload.get("schema_version") or self.SCHEMA_VERSION),
                "revision": int(raw_payload.get("revision") or 1),
                "updated_at": raw_payload.get("updated_at") or self._utcnow_iso(),
                "data": raw_payload.get("data", default),
            }

        data = default if raw_payload is None else raw_payload
        return {
            "schema_version": self.SCHEMA_VERSION,
            "revision": 1,
            "updated_at": self._utcnow_iso(),
            "data": data,
        }

    def get_envelope(self, namespace: str, default: Any | None = None) -> dict[str, Any]:
        self._validate_namespace(namespace)
        default_value = [] if default is None else default
        return self._normalize_envelope(self._read_raw_json(namespace), default_value)

    def get_json(self, namespace: str, default: Any | None = None) -> Any:
        return self.get_envelope(namespace, default=default).get("data")

    def update_json(
        self,
        namespace: str,
        updater: Callable[[Any], Any],
        default: Any | None = None,
    ) -> Any:
        self._validate_namespace(namespace)
        default_value = [] if default is None else default
        with self._state_lock():
            current = self.get_envelope(namespace, default=default_value)
            updated = updater(current.get("data", default_value))
            self._write_raw_json(
                namespace,
                {
                    "schema_version": self.SCHEMA_VERSION,
                    "revision": int(current.get("revision", 1)) + 1,
                    "updated_at": self._utcnow_iso(),
                    "data": updated,
                },
            )
        return updated

    def has_docs(self) -> bool:
        if not self.docs_dir.is_dir():
            return False
        return any(path.is_file() for path in self.docs_dir.rglob("*.md"))

    def get_iterations(self) -> list[dict[str, Any]]:
        iterations = self.get_json("iterations", default=[])
        if not isinstance(iterations, list):
            return []
        return [item for item in iterations if isinstance(item, dict) and item.get("id")]

    def get_issues(self) -> list[str]:
        issues = self.get_json("issues", default=[])
        if not isinstance(issues, list):
            return []
        return [str(item) for item in issues if str(item).strip()]

    def load_snapshot(self) -> ProjectStateSnapshot:
        return ProjectStateSnapshot(
            has_prior_docs=self.has_docs(),
            prior_iteration_ids=tuple(str(item["id"]) for item in self.get_iterations()),
            known_issues=frozenset(self.get_issues()),
        )

    def record_iteration(self, report: WorkflowReport, *, request_text: str = "") -> str:
        iteration_id = f"iter-{datetime.now(UTC).strftime('%Y%m%d%H%M%S')}-{uuid4().hex[:6]}"
        record = {
            "id": iteration_id,
            "request": request_text,
            "category": report.category.value,
            "plan": [stage.value for stage in report.plan],
            "overall_status": report.overall_status.value,
            "overall_score": report.overall_score,
            "recorded_at": self._utcnow_iso(),
        }

        def _updater(payload: Any) -> list[dict[str, Any]]:
            iterations = payload if isinstance(payload, list) else []
            iterations.append(record)
            return iterations

        self.update_json("iterations", _updater, default=[])
        logger.info("Recorded iteration %s", iteration_id)
        return iteration_id

    def add_issue(self, issue_id: str) -> None:
        issue = issue_id.strip()
        if not issue:
            raise StateError("Issue id must not be empty.")

        def _updater(payload: Any) -> list[str]:
            issues = [str(item) for item in payload] if isinstance(payload, list) else []
            if issue not in issues:
                issues.append(issue)
            return issues

        self.update_json("issues", _updater, default=[])

    def resolve_issue(self, issue_id: str) -> bool:
        issue = issue_id.strip()
        found = issue in self.get_issues()

        def _updater(payload: Any) -> list[str]:
            issues = [str(item) for item in payload] if isinstance(payload, list) else []
            return [item for item in issues if item != issue]

        if found:
            self.update_json("issues", _updater, default=[])
        return found
