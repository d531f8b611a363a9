"""Jinja2 template engine used to render init-system unit definitions.

Built-in templates ship inside the package under ``provisionctl/templates``.
An optional override directory (``templates_dir`` in the configuration) is
searched first so operators can replace a template without patching the
package.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, StrictUndefined
from jinja2 import TemplateError as JinjaTemplateError

from ..errors import ValidationError
from ..shell import powershell_quote, shquote

BUILTIN_TEMPLATES = Path(__file__).resolve().parent


class TemplateRenderError(ValidationError):
    """Raised when a template is missing or references an undefined variable."""


@dataclass(slots=True)
class TemplateEngine:
    """Render templates with strict variables and preserved trailing newlines."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine searching *override_dir* before the built-ins."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("provisionctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,  # noqa: S701 - renders shell and unit syntax, not HTML
        )
        environment.filters["shquote"] = shquote
        environment.filters["ps_quote"] = powershell_quote
        return cls(environment=environment)

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context* and return the text."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**context)
        except JinjaTemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render into *destination*, returning ``True`` when the file changed."""
        content = self.render_to_string(template_name, context)
        payload = content.encode("utf-8")
        if destination.exists() and destination.read_bytes() == payload:
            return False
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(payload)
        destination.chmod(mode)
        return True


__all__ = ["BUILTIN_TEMPLATES", "TemplateEngine", "TemplateRenderError"]
