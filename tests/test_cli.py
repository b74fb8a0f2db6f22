from __future__ import annotations

import importlib.util
import json
import os
import subprocess
import sys
import textwrap
from pathlib import Path

import pytest


def load_cli():
    module_path = Path(__file__).resolve().parents[1] / "scripts" / "conductor_plan.py"
    spec = importlib.util.spec_from_file_location("conductor_plan_test_module", module_path)
    assert spec and spec.loader
    cli = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(cli)
    return cli


def write_plan(directory: Path, body: str, name: str = "plan.yaml") -> None:
    (directory / name).write_text(textwrap.dedent(body), encoding="utf-8")


def test_plans_lists_available_plans(tmp_path: Path, capsys) -> None:
    write_plan(
        tmp_path,
        """
        id: cleanup
        title: Clean workspace
        tasks:
          - id: one
            description: First
        """,
    )
    cli = load_cli()

    cli.main(["--path", str(tmp_path), "plans"])

    assert capsys.readouterr().out.strip() == "cleanup [1 tasks] Clean workspace"


def test_plans_reports_load_failures(tmp_path: Path, capsys) -> None:
    (tmp_path / "broken.yaml").write_text("id: \ntitle: x", encoding="utf-8")
    cli = load_cli()

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--path", str(tmp_path), "plans"])

    assert excinfo.value.code == 1
    assert "Plan load failed" in capsys.readouterr().out


def test_show_prints_dependencies(tmp_path: Path, capsys) -> None:
    write_plan(
        tmp_path,
        """
        id: ship
        title: Ship
        tasks:
          - id: build
            description: Build
            tool: {name: run_command, args: {command: "true"}}
          - id: release
            description: Release
            dependencies: [build]
        """,
    )
    cli = load_cli()

    cli.main(["--path", str(tmp_path), "show", "ship"])

    assert capsys.readouterr().out.splitlines() == [
        f"ship: Ship ({tmp_path / 'plan.yaml'})",
        "build (run_command): Build",
        "release: Release <- build",
    ]


def test_show_lists_overridden_plan_files(tmp_path: Path, capsys) -> None:
    base = tmp_path / "base"
    base.mkdir()
    local = tmp_path / "local"
    local.mkdir()
    body = """
        id: ship
        title: Ship
        tasks:
          - id: build
            description: Build
        """
    write_plan(base, body)
    write_plan(local, body, name="ship.yml")
    cli = load_cli()

    cli.main(["--path", str(base), "--path", str(local), "show", "ship"])

    assert capsys.readouterr().out.splitlines()[:2] == [
        f"ship: Ship ({local / 'ship.yml'})",
        f"  overrides {base / 'plan.yaml'}",
    ]


@pytest.mark.skipif(os.name != "posix", reason="requires a POSIX shell")
def test_run_executes_plan_tools(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.setenv("CONDUCTOR_WORKDIR", str(tmp_path))
    monkeypatch.setenv("CONDUCTOR_APPROVAL_MODE", "full-auto")
    write_plan(
        tmp_path,
        """
        id: touch
        title: Touch files
        tasks:
          - id: make
            description: Create marker
            tool: {name: write_file, args: {path: marker.txt, content: done}}
          - id: check
            description: Check marker
            dependencies: [make]
            tool: {name: run_command, args: {command: "cat marker.txt"}}
        """,
    )
    cli = load_cli()

    cli.main(["--path", str(tmp_path), "run", "touch", "--sequential", "--json"])

    payload = json.loads(capsys.readouterr().out)
    assert payload["error"] is None
    assert payload["progress"]["percentage"] == 100
    assert payload["tasks"][1]["result"]["stdout"] == "done"
    assert (tmp_path / "marker.txt").read_text(encoding="utf-8") == "done"


@pytest.mark.skipif(os.name != "posix", reason="requires a POSIX shell")
def test_run_exits_non_zero_when_a_task_fails(tmp_path: Path, capsys, monkeypatch) -> None:
    monkeypatch.setenv("CONDUCTOR_WORKDIR", str(tmp_path))
    monkeypatch.setenv("CONDUCTOR_APPROVAL_MODE", "full-auto")
    write_plan(
        tmp_path,
        """
        id: fragile
        title: Fragile
        tasks:
          - id: read
            description: Read a missing file
            tool: {name: read_file, args: {path: missing.txt}}
          - id: after
            description: Never runs
            dependencies: [read]
        """,
    )
    cli = load_cli()

    with pytest.raises(SystemExit) as excinfo:
        cli.main(["--path", str(tmp_path), "run", "fragile"])

    output = capsys.readouterr().out
    assert excinfo.value.code == 1
    assert "read [failed]" in output
    assert "after [pending]" in output
    assert "0/2 completed (0%)" in output


def test_cli_without_command_prints_help(tmp_path: Path) -> None:
    script = Path("scripts/conductor_plan.py")
    repo_root = Path(__file__).resolve().parents[1]
    env = os.environ.copy()
    env["PYTHONPATH"] = f"{repo_root / 'src'}" + os.pathsep + env.get("PYTHONPATH", "")
    process = subprocess.run(
        [sys.executable, str(script)],
        cwd=str(repo_root),
        capture_output=True,
        text=True,
        env=env,
    )

    assert process.returncode == 0
    assert "Conductor plan runner" in process.stdout
