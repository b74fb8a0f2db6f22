from __future__ import annotations

import json
from pathlib import Path

from conductor_mcp import __version__
from conductor_mcp.config import ConductorSettings
from conductor_mcp.server import create_server
from conductor_mcp.shell import SessionManager
from conductor_mcp.tools import ApprovalWorkflow, ToolExecutor


def build_settings(tmp_path: Path, **overrides) -> ConductorSettings:
    return ConductorSettings(plan_paths=(tmp_path,), workdir=tmp_path, **overrides)


def test_create_server_wires_components(tmp_path: Path) -> None:
    settings = build_settings(tmp_path, approval_mode="auto-edit", max_concurrent=3)

    server = create_server(settings)

    executor = getattr(server, "tool_executor")
    handles = getattr(server, "tool_handles")
    assert executor.approval.mode == "auto-edit"
    assert executor.sessions.get_cwd() == str(tmp_path)
    assert handles.batch_executor.max_concurrent == 3
    assert handles.task_manager is getattr(server, "task_manager")
    assert "execute_batch" in handles.tools


def test_status_resource_reports_runtime_state(tmp_path: Path) -> None:
    (tmp_path / "nightly.yaml").write_text(
        "id: nightly\ntitle: Nightly\ntasks:\n  - id: a\n    description: A\n",
        encoding="utf-8",
    )
    executor = ToolExecutor(ApprovalWorkflow("full-auto"), SessionManager(cwd=tmp_path))
    server = create_server(build_settings(tmp_path), executor=executor)
    getattr(server, "task_manager").add_task("Pending work")
    executor.sessions.get_session("extra")

    payload = json.loads(server.status_resource(None))

    assert payload["server_version"] == __version__
    assert payload["plans"] == {
        "count": 1,
        "ids": ["nightly"],
        "search_paths": [str(tmp_path)],
        "error": None,
    }
    assert payload["sessions"]["count"] == 2
    assert payload["sessions"]["background_running"] == 0
    assert payload["tasks"]["total"] == 1
    assert payload["tasks"]["pending"] == 1
    assert payload["request_id"] is None


def test_status_resource_surfaces_plan_errors(tmp_path: Path) -> None:
    (tmp_path / "broken.yaml").write_text("id: \ntitle: x", encoding="utf-8")

    server = create_server(build_settings(tmp_path))
    payload = json.loads(server.status_resource(None))

    assert payload["plans"]["count"] == 0
    assert "Plan validation error" in payload["plans"]["error"]
