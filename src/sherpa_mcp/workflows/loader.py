"""Workflow catalog loading utilities."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import Workflow

logger = logging.getLogger(__name__)


class WorkflowLoadError(RuntimeError):
    """Raised when a requested workflow cannot be found."""


class WorkflowLoader:
    """Loads workflow definitions from YAML files on disk.

    The file stem is the workflow key (``tdd.yaml`` -> ``tdd``). Files that fail
    to parse or validate are skipped and reported through :attr:`errors`, so a
    single broken definition never takes the catalog down.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        self._search_paths: list[Path] = [Path(path) for path in (search_paths or [])]
        self._errors: list[str] = []

    @property
    def search_paths(self) -> list[Path]:
        """Return the configured search paths that currently exist."""

        return [path for path in self._search_paths if path.is_dir()]

    @property
    def errors(self) -> list[str]:
        """Problems found during the most recent :meth:`load_all`."""

        return list(self._errors)

    def load_all(self) -> dict[str, Workflow]:
        """Load workflows from all configured search paths.

        Later search paths override earlier ones when workflow keys collide.
        """

        workflows: dict[str, Workflow] = {}
        errors: list[str] = []

        for base in self.search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except (OSError, UnicodeDecodeError, yaml.YAMLError) as exc:
                    errors.append(f"Failed to read workflow {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    workflow = Workflow.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Workflow validation error in {path}: {exc}")
                    continue

                workflows[path.stem] = workflow
                logger.debug("Loaded workflow", extra={"key": path.stem, "path": str(path)})

        for error in errors:
            logger.warning("Skipping invalid workflow file: %s", error)
        self._errors = errors
        return workflows

    def get(self, key: str) -> Workflow:
        """Return a single workflow by key."""

        workflows = self.load_all()
        try:
            return workflows[key]
        except KeyError as exc:
            raise WorkflowLoadError(f"Workflow '{key}' not found in search paths") from exc


def load_workflows(search_paths: Iterable[Path] | None = None) -> dict[str, Workflow]:
    """Convenience wrapper for loading workflows from the provided paths."""

    loader = WorkflowLoader(search_paths)
    return loader.load_all()


__all__ = ["WorkflowLoadError", "WorkflowLoader", "load_workflows"]
