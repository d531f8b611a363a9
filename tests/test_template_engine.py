"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest

from provisionctl.templates import TemplateEngine, TemplateRenderError


def _unit_context(name: str, **overrides: object) -> dict[str, object]:
    context: dict[str, object] = {
        "name": name,
        "description": f"{name} daemon",
        "command": f"/usr/bin/{name}",
        "environment": [("LOG_LEVEL", "info")],
        "extra_script": "",
        "extra_script_path": "",
        "unit_path": f"/etc/systemd/system/{name}.service",
    }
    context.update(overrides)
    return context


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string("systemd/service.j2", _unit_context("alpha"))

    assert "Description=alpha daemon\n" in output
    assert 'Environment="LOG_LEVEL=info"\n' in output
    assert output.endswith("WantedBy=multi-user.target\n")


def test_undefined_variable_raises_render_error() -> None:
    """A missing context variable is reported instead of rendering blank."""
    engine = TemplateEngine.with_overrides(None)
    context = _unit_context("alpha")
    del context["command"]

    with pytest.raises(TemplateRenderError, match="systemd/service.j2"):
        engine.render_to_string("systemd/service.j2", context)


def test_missing_template_raises_render_error() -> None:
    """Unknown template names surface as render errors."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateRenderError):
        engine.render_to_string("launchd/service.plist.j2", {})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "init" / "beta.service"

    changed = engine.render_to_path(
        "systemd/service.j2",
        destination,
        _unit_context("beta"),
        mode=0o600,
    )

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o600"

    # Second render with same content should be a no-op.
    changed_again = engine.render_to_path(
        "systemd/service.j2",
        destination,
        _unit_context("beta"),
        mode=0o600,
    )
    assert changed_again is False

    changed_command = engine.render_to_path(
        "systemd/service.j2",
        destination,
        _unit_context("beta", command="/usr/bin/beta --once"),
        mode=0o600,
    )
    assert changed_command is True
    assert "ExecStart=/usr/bin/beta --once\n" in destination.read_text(encoding="utf-8")


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "systemd" / "service.j2"
    override_template.parent.mkdir(parents=True)
    override_template.write_text("override {{ name }}", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    assert engine.render_to_string("systemd/service.j2", _unit_context("gamma")) == (
        "override gamma"
    )
    # Templates absent from the override directory still come from the package.
    upstart = engine.render_to_string("upstart/service.conf.j2", _unit_context("gamma"))
    assert "exec /usr/bin/gamma" in upstart


def test_quoting_filters_are_registered(tmp_path: Path) -> None:
    """Templates can quote values for POSIX shells and PowerShell."""
    override_dir = tmp_path / "templates"
    override_dir.mkdir()
    (override_dir / "quote.j2").write_text(
        "{{ value | shquote }} {{ value | ps_quote }}", encoding="utf-8"
    )
    engine = TemplateEngine.with_overrides(override_dir)

    rendered = engine.render_to_string("quote.j2", {"value": "it's"})

    assert rendered == "'it'\"'\"'s' 'it''s'"
