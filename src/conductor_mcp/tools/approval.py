"""Approval gate consulted before a tool performs side effects."""

from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Protocol

from ..config import APPROVAL_MODES

logger = logging.getLogger(__name__)

Prompter = Callable[[str, str], "bool | Awaitable[bool]"]


class Approver(Protocol):
    async def request_approval(self, action: str, details: str) -> bool:
        ...


class ApprovalWorkflow:
    """Decides whether an action may proceed.

    ``full-auto`` approves everything, ``auto-edit`` approves edit actions and
    defers the rest, ``suggest`` defers everything. Deferred requests go to the
    prompter; without one they are declined.
    """

    def __init__(self, mode: str = "suggest", prompter: Prompter | None = None) -> None:
        if mode not in APPROVAL_MODES:
            raise ValueError(f"Unknown approval mode '{mode}'. Use one of {', '.join(APPROVAL_MODES)}")
        self.mode = mode
        self._prompter = prompter

    async def request_approval(self, action: str, details: str) -> bool:
        if self.mode == "full-auto":
            logger.debug("Auto-approved", extra={"action": action})
            return True

        if self.mode == "auto-edit" and "edit" in action.lower():
            logger.debug("Auto-approved edit", extra={"action": action})
            return True

        if self._prompter is None:
            logger.info("Declined without prompter", extra={"action": action, "mode": self.mode})
            return False

        decision = self._prompter(action, details)
        if inspect.isawaitable(decision):
            decision = await decision
        logger.debug("Approval decided", extra={"action": action, "approved": bool(decision)})
        return bool(decision)


__all__ = ["ApprovalWorkflow", "Approver", "Prompter"]
