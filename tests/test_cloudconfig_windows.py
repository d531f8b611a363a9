"""Tests for the Windows bootstrap compiler."""
from __future__ import annotations

from provisionctl.cloudconfig import WINDOWS_HEADER, PackageSource, WindowsCompiler, new_compiler


def test_empty_document_is_header_only() -> None:
    """An empty Windows document is just the PowerShell marker."""
    assert WindowsCompiler().render_structured() == WINDOWS_HEADER.encode()


def test_commands_are_crlf_separated() -> None:
    """Boot commands precede run commands, each on its own CRLF line."""
    compiler = WindowsCompiler()
    compiler.add_run_command("Start-Service agentd")
    compiler.add_boot_command("Set-ExecutionPolicy Unrestricted")

    rendered = compiler.render_structured()

    assert rendered == (
        b"#ps1_sysnative\r\n\r\nSet-ExecutionPolicy Unrestricted\r\nStart-Service agentd"
    )
    assert compiler.render_script() == rendered.decode()


def test_package_operations_are_ignored() -> None:
    """Package intent has no effect on Windows output."""
    compiler = new_compiler("windows")
    compiler.set_package_proxy("http://proxy:3128")
    compiler.add_package_source(PackageSource("ppa:x/y"))
    compiler.add_package("curl")
    compiler.enable_system_update(False)

    assert compiler.render_structured() == WINDOWS_HEADER.encode()


def test_files_are_written_with_powershell() -> None:
    """File writes become Set-Content statements."""
    compiler = WindowsCompiler()
    compiler.add_file("C:\\agentd\\agentd.yml", "level: debug\n")

    rendered = compiler.render_structured().decode()

    assert "Set-Content -Path 'C:\\agentd\\agentd.yml' -Value @'\r\nlevel: debug\r\n'@" in rendered


def test_cloud_archive_is_a_noop() -> None:
    """Windows ignores the cloud-tools archive."""
    compiler = new_compiler("windows", series="win2012r2")
    compiler.add_cloud_archive_cloud_tools()

    assert compiler.render_structured() == WINDOWS_HEADER.encode()
