"""Discovery of YAML task plans on the configured plan paths."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import PlanDefinition

logger = logging.getLogger(__name__)

PLAN_SUFFIXES = (".yaml", ".yml")


class PlanLoadError(RuntimeError):
    """Raised when plan files cannot be read or a plan id cannot be resolved."""


@dataclass(slots=True)
class PlanSource:
    """A validated plan and the file it came from."""

    plan: PlanDefinition
    path: Path
    shadowed: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan.id,
            "path": str(self.path),
            "shadowed": [str(path) for path in self.shadowed],
        }


class PlanLoader:
    """Finds plan files on the search paths and resolves plan ids to them.

    Each search path is a directory of ``*.yaml``/``*.yml`` files, one plan per
    file. A plan id defined in a later directory replaces the one from an
    earlier directory; the replaced files are kept on ``PlanSource.shadowed``.
    Two files in the same directory declaring one id is an error, since neither
    can be said to come later.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.is_dir()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def plan_files(self, directory: Path) -> list[Path]:
        return sorted(
            path for path in directory.iterdir() if path.is_file() and path.suffix in PLAN_SUFFIXES
        )

    def discover(self) -> dict[str, PlanSource]:
        """Read every plan file and map plan ids to their effective source."""

        sources: dict[str, PlanSource] = {}
        errors: list[str] = []

        for directory in self._search_paths:
            declared: dict[str, Path] = {}
            for path in self.plan_files(directory):
                try:
                    plan = _read_plan(path)
                except PlanLoadError as exc:
                    errors.append(str(exc))
                    continue
                if plan is None:
                    continue

                if plan.id in declared:
                    errors.append(
                        f"Plan '{plan.id}' declared twice in {directory}: "
                        f"{declared[plan.id].name} and {path.name}"
                    )
                    continue
                declared[plan.id] = path

                previous = sources.get(plan.id)
                shadowed: list[Path] = []
                if previous is not None:
                    shadowed = [*previous.shadowed, previous.path]
                    logger.info(
                        "Plan overridden by later search path",
                        extra={"plan_id": plan.id, "plan_file": str(path), "previous": str(previous.path)},
                    )
                sources[plan.id] = PlanSource(plan=plan, path=path, shadowed=shadowed)

        if errors:
            raise PlanLoadError("; ".join(errors))

        return sources

    def load_all(self) -> dict[str, PlanDefinition]:
        return {plan_id: source.plan for plan_id, source in self.discover().items()}

    def locate(self, plan_id: str) -> PlanSource:
        """Return the effective source of ``plan_id``."""

        sources = self.discover()
        source = sources.get(plan_id)
        if source is None:
            available = ", ".join(sorted(sources)) or "none"
            raise PlanLoadError(f"Plan '{plan_id}' not found in search paths (available: {available})")
        return source

    def get(self, plan_id: str) -> PlanDefinition:
        return self.locate(plan_id).plan


def _read_plan(path: Path) -> PlanDefinition | None:
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise PlanLoadError(f"Failed to parse YAML in {path}: {exc}") from exc

    if document is None:
        return None
    if not isinstance(document, dict):
        raise PlanLoadError(f"Plan file {path} must hold a mapping, got {type(document).__name__}")

    try:
        return PlanDefinition.model_validate(document)
    except ValidationError as exc:
        raise PlanLoadError(f"Plan validation error in {path}: {exc}") from exc


__all__ = ["PLAN_SUFFIXES", "PlanLoadError", "PlanLoader", "PlanSource"]
