"""Jinja2 template engine for generated unit files and scripts.

Built-in templates live next to this module under ``builtin/``. Operators may
drop a file with the same relative name into the configured
``templates_dir`` to override any of them.
"""
from __future__ import annotations

import shlex
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined, TemplateError

BUILTIN_DIR = Path(__file__).resolve().parent / "builtin"


class TemplateRenderError(RuntimeError):
    """Raised when a template is missing or fails to render."""


@dataclass(slots=True)
class TemplateEngine:
    """Render dnsttctl templates with strict undefined-variable handling."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine that prefers templates found in *override_dir*."""
        loaders: list[FileSystemLoader] = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(FileSystemLoader(str(BUILTIN_DIR)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        environment.filters["shell_quote"] = lambda value: shlex.quote(str(value))
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**dict(context))
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc


__all__ = ["BUILTIN_DIR", "TemplateEngine", "TemplateRenderError"]
