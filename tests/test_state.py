import json
from pathlib import Path

import pytest

from specflow.models import (
    OverallStatus,
    RequestCategory,
    StageId,
    StageResult,
    StageStatus,
    WorkflowReport,
)
from specflow.state import ProjectStateStore, StateError


def _report() -> WorkflowReport:
    return WorkflowReport(
        category=RequestCategory.BUG_FIX,
        plan=(StageId.ANALYZE, StageId.DEVELOP, StageId.VALIDATE),
        results=[StageResult(StageId.ANALYZE, StageStatus.OK, score=90)],
        overall_status=OverallStatus.PASSED,
        overall_score=90.0,
    )


def test_empty_project_snapshot(tmp_path: Path) -> None:
    snapshot = ProjectStateStore(tmp_path).load_snapshot()

    assert snapshot.has_prior_docs is False
    assert snapshot.prior_iteration_ids == ()
    assert snapshot.known_issues == frozenset()


def test_markdown_docs_mark_prior_state(tmp_path: Path) -> None:
    docs = tmp_path / "docs" / "design"
    docs.mkdir(parents=True)
    (docs / "notes.txt").write_text("draft\n", encoding="utf-8")
    store = ProjectStateStore(tmp_path)

    assert store.load_snapshot().has_prior_docs is False

    (docs / "architecture.md").write_text("# Architecture\n", encoding="utf-8")
    assert store.load_snapshot().has_prior_docs is True


def test_record_iteration_appends_to_history(tmp_path: Path) -> None:
    store = ProjectStateStore(tmp_path)
    first = store.record_iteration(_report(), request_text="Fix the login bug")
    second = store.record_iteration(_report())

    snapshot = store.load_snapshot()
    assert snapshot.prior_iteration_ids == (first, second)
    stored = store.get_iterations()[0]
    assert stored["request"] == "Fix the login bug"
    assert stored["category"] == "BUG_FIX"
    assert stored["plan"] == ["ANALYZE", "DEVELOP", "VALIDATE"]
    assert stored["overall_status"] == "PASSED"
    assert store.get_envelope("iterations")["revision"] == 3


def test_issue_lifecycle(tmp_path: Path) -> None:
    store = ProjectStateStore(tmp_path)
    store.add_issue("AUTH-12")
    store.add_issue("AUTH-12")
    store.add_issue("PAY-3")

    assert store.load_snapshot().known_issues == frozenset({"AUTH-12", "PAY-3"})
    assert store.resolve_issue("AUTH-12") is True
    assert store.resolve_issue("AUTH-12") is False
    assert store.get_issues() == ["PAY-3"]

    with pytest.raises(StateError):
        store.add_issue("   ")


def test_legacy_payload_is_migrated(tmp_path: Path) -> None:
    state_dir = tmp_path / ".specflow" / "state"
    state_dir.mkdir(parents=True)
    issues_path = state_dir / "issues.json"
    issues_path.write_text(json.dumps(["OLD-1"]), encoding="utf-8")
    store = ProjectStateStore(tmp_path)

    assert store.get_issues() == ["OLD-1"]

    store.add_issue("NEW-2")
    on_disk = json.loads(issues_path.read_text(encoding="utf-8"))
    assert on_disk["schema_version"] == ProjectStateStore.SCHEMA_VERSION
    assert on_disk["data"] == ["OLD-1", "NEW-2"]
    assert not (state_dir / ".lock").exists()


def test_corrupt_state_file_is_ignored(tmp_path: Path) -> None:
    state_dir = tmp_path / ".specflow" / "state"
    state_dir.mkdir(parents=True)
    (state_dir / "iterations.json").write_text("{not json", encoding="utf-8")

    assert ProjectStateStore(tmp_path).load_snapshot().prior_iteration_ids == ()


def test_unknown_namespace_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(StateError):
        ProjectStateStore(tmp_path).get_json("tasks")


def test_custom_directories(tmp_path: Path) -> None:
    (tmp_path / "handbook").mkdir()
    (tmp_path / "handbook" / "index.md").write_text("# Handbook\n", encoding="utf-8")
    store = ProjectStateStore(tmp_path, docs_dir="handbook", state_dir="var/state")
    store.add_issue("X-1")

    assert store.load_snapshot().has_prior_docs is True
    assert (tmp_path / "var" / "state" / "issues.json").exists()
