from __future__ import annotations

import asyncio

import pytest

from conductor_mcp.tools import ApprovalWorkflow


def test_full_auto_approves_everything() -> None:
    workflow = ApprovalWorkflow("full-auto")

    assert asyncio.run(workflow.request_approval("Delete file/directory", "Path: /tmp/x")) is True


def test_auto_edit_approves_only_edits() -> None:
    asked: list[str] = []

    def prompter(action: str, details: str) -> bool:
        asked.append(action)
        return False

    workflow = ApprovalWorkflow("auto-edit", prompter)

    assert asyncio.run(workflow.request_approval("Edit file", "Path: a")) is True
    assert asyncio.run(workflow.request_approval("Run shell command", "Command: ls")) is False
    assert asked == ["Run shell command"]


def test_suggest_defers_to_async_prompter() -> None:
    async def prompter(action: str, details: str) -> bool:
        return "ls" in details

    workflow = ApprovalWorkflow("suggest", prompter)

    assert asyncio.run(workflow.request_approval("Run shell command", "Command: ls")) is True
    assert asyncio.run(workflow.request_approval("Run shell command", "Command: rm")) is False


def test_missing_prompter_declines() -> None:
    workflow = ApprovalWorkflow("suggest")

    assert asyncio.run(workflow.request_approval("Edit file", "Path: a")) is False


def test_unknown_mode_is_rejected() -> None:
    with pytest.raises(ValueError):
        ApprovalWorkflow("yolo")
