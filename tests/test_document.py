"""Tests for the first-boot document model and its renderings."""
from __future__ import annotations

import pytest
import yaml

from provisionctl.cloudconfig.document import (
    CLOUD_CONFIG_HEADER,
    ConfigDocument,
    FileWrite,
    dump_cloud_config,
    init_progress_command,
)
from provisionctl.errors import SerializationError


def _load(rendered: bytes) -> dict[str, object]:
    text = rendered.decode()
    assert text.startswith(CLOUD_CONFIG_HEADER)
    return yaml.safe_load(text[len(CLOUD_CONFIG_HEADER) :])


def test_empty_document_renders_header_only() -> None:
    """An empty document is still a valid cloud-config mapping."""
    assert ConfigDocument().render_structured() == b"#cloud-config\n{}\n"


def test_structured_payload_includes_commands_and_files() -> None:
    """Attributes, commands and files appear under their cloud-init keys."""
    document = ConfigDocument()
    document.set_attribute("package_upgrade", True)
    document.add_boot_command("echo boot")
    document.add_run_command("echo run")
    document.add_file("/etc/motd", "hello\n", 0o600)

    payload = _load(document.render_structured())

    assert payload == {
        "package_upgrade": True,
        "bootcmd": ["echo boot"],
        "runcmd": ["echo run"],
        "write_files": [{"path": "/etc/motd", "content": "hello\n", "permissions": "0600"}],
    }


def test_script_rendering_order() -> None:
    """Scripts write files, then boot, package and run commands."""
    document = ConfigDocument()
    document.add_run_command("echo run")
    document.add_boot_command("echo boot")
    document.add_file("/etc/motd", "hi")

    script = document.render_script(["echo package"])

    assert script.splitlines() == [
        "#!/bin/bash",
        "set -e",
        init_progress_command(),
        "install -D -m 644 /dev/null /etc/motd",
        "printf '%s' hi > /etc/motd",
        "echo boot",
        "echo package",
        "echo run",
    ]
    assert script.endswith("\n")


def test_copy_is_independent() -> None:
    """Rewriting a copy never leaks into the original document."""
    document = ConfigDocument()
    document.set_attribute("packages", ["curl"])
    document.add_run_command("echo run")

    view = document.copy()
    view.attribute("packages").append("git")  # type: ignore[union-attr]
    view.unset_attribute("packages")
    view.add_run_command("echo more")

    assert document.attribute("packages") == ["curl"]
    assert document.run_commands == ["echo run"]


def test_unset_missing_attribute_is_noop() -> None:
    """Unsetting an absent key does nothing."""
    document = ConfigDocument()
    document.unset_attribute("apt_proxy")
    assert document.attributes == {}


def test_file_write_permissions_format() -> None:
    """Permissions render as a four-digit octal string."""
    assert FileWrite("/a", "x", 0o755).to_dict()["permissions"] == "0755"
    assert FileWrite("/a", "x").to_dict()["permissions"] == "0644"


def test_unserialisable_value_raises_serialization_error() -> None:
    """Values YAML cannot represent are reported as serialization errors."""
    with pytest.raises(SerializationError, match="Cannot serialise"):
        dump_cloud_config({"bad": object()})
