"""Stored patterns and templates that resolve tasks without any model.

A TemplateCatalog maps a name to a regex that recognises the task
description and a string.Template body rendered from the task payload.
The classifier asks the catalog whether a task is satisfiable (tier 0);
the pattern execution client renders the match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from string import Template
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from tiered_router.model_router.models import Task

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StoredTemplate:
    """A named pattern/template pair.

    Attributes:
        name: Lookup key, matched against Task.template_key
        pattern: Regex matched against the task description (case-insensitive)
        body: string.Template source rendered with the task payload
        required_fields: Payload keys the body needs
    """

    name: str
    pattern: str
    body: str
    required_fields: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        try:
            re.compile(self.pattern)
        except re.error as exc:
            raise ValueError(f"Invalid pattern for template {self.name!r}: {exc}") from exc

    def matches(self, task: Task) -> bool:
        if task.template_key is not None:
            return task.template_key == self.name and self.has_fields(task.payload)
        if not re.search(self.pattern, task.description, re.IGNORECASE):
            return False
        return self.has_fields(task.payload)

    def has_fields(self, payload: dict[str, Any]) -> bool:
        return self.required_fields <= payload.keys()

    def render(self, payload: dict[str, Any]) -> str:
        return Template(self.body).substitute({k: str(v) for k, v in payload.items()})


class TemplateCatalog:
    """Read-mostly collection of stored templates."""

    def __init__(self, templates: list[StoredTemplate] | None = None) -> None:
        self._templates: dict[str, StoredTemplate] = {}
        for template in templates or []:
            self.add(template)

    def add(self, template: StoredTemplate) -> None:
        self._templates[template.name] = template
        log.debug("template_catalog.added", name=template.name)

    def remove(self, name: str) -> None:
        self._templates.pop(name, None)

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def find(self, task: Task) -> StoredTemplate | None:
        """Return the first template that can satisfy the task, if any.

        An explicit template_key is authoritative: when it names no stored
        template the task is not satisfiable here.
        """
        if task.template_key is not None:
            template = self._templates.get(task.template_key)
            if template is not None and template.matches(task):
                return template
            return None

        for template in self._templates.values():
            if template.matches(task):
                return template
        return None


def default_templates() -> TemplateCatalog:
    """Built-in boilerplate templates."""
    return TemplateCatalog(
        [
            StoredTemplate(
                name="python_getter",
                pattern=r"\b(add|generate) (a )?getter\b",
                body=(
                    "@property\n"
                    "def ${field}(self):\n"
                    "    return self._${field}\n"
                ),
                required_fields=frozenset({"field"}),
            ),
            StoredTemplate(
                name="license_header",
                pattern=r"\blicen[cs]e header\b",
                body="# Copyright (c) ${year} ${owner}. All rights reserved.\n",
                required_fields=frozenset({"year", "owner"}),
            ),
            StoredTemplate(
                name="rename_symbol",
                pattern=r"\brename\b.+\bto\b",
                body="s/\\b${old}\\b/${new}/g",
                required_fields=frozenset({"old", "new"}),
            ),
        ]
    )
