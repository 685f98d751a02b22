"""Control template loading utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from .models import BUILTIN_TEMPLATES, ControlTemplate


class TemplateLoadError(RuntimeError):
    """Raised when one or more template files cannot be parsed."""


class TemplateLoader:
    """Loads control templates from YAML files on top of the built-in set."""

    def __init__(
        self,
        search_paths: Iterable[Path] | None = None,
        *,
        include_builtins: bool = True,
    ) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]
        self._include_builtins = include_builtins

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_all(self) -> dict[str, ControlTemplate]:
        """Load templates from all configured search paths.

        Later search paths override earlier ones, and files override built-ins,
        when template ids collide.
        """

        templates: dict[str, ControlTemplate] = (
            dict(BUILTIN_TEMPLATES) if self._include_builtins else {}
        )
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    template = ControlTemplate.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Template validation error in {path}: {exc}")
                    continue

                templates[template.id] = template

        if errors:
            raise TemplateLoadError("; ".join(errors))

        return templates

    def get(self, template_id: str) -> ControlTemplate:
        templates = self.load_all()
        try:
            return templates[template_id]
        except KeyError as exc:
            available = ", ".join(sorted(templates)) or "none"
            raise TemplateLoadError(
                f"Template '{template_id}' not found. Available templates: {available}"
            ) from exc


__all__ = ["TemplateLoadError", "TemplateLoader"]
