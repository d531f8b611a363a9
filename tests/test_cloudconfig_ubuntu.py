"""Tests for the apt-based bootstrap compiler."""
from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import pytest
import yaml

from provisionctl.cloudconfig import UbuntuCompiler
from provisionctl.cloudconfig.document import CLOUD_CONFIG_HEADER
from provisionctl.cloudconfig.packaging import (
    APT_GET,
    PackagePreference,
    PackageSource,
    ProxySettings,
)
from provisionctl.cloudconfig.ubuntu import (
    apt_mirror_commands,
    coalesce_packages,
    rename_apt_list_files_commands,
)
from provisionctl.errors import ConfigConflict, InvalidPackageSpec
from provisionctl.shell import shquote

requires_bash = pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")


def _structured(compiler: UbuntuCompiler) -> dict[str, object]:
    text = compiler.render_structured().decode()
    assert text.startswith(CLOUD_CONFIG_HEADER)
    return yaml.safe_load(text[len(CLOUD_CONFIG_HEADER) :])


def test_structured_rendering_uses_apt_keys() -> None:
    """Proxy, mirror and sources map onto cloud-init's apt keys."""
    compiler = UbuntuCompiler()
    compiler.set_package_proxy("http://proxy:3128")
    compiler.set_package_mirror("http://mirror.example/ubuntu")
    compiler.add_package_source(PackageSource("ppa:juju/stable", "KEYDATA"))
    compiler.add_package_preference(
        PackagePreference("/etc/apt/preferences.d/juju", "Package: *\nPin-Priority: 400")
    )
    compiler.add_package("curl")

    payload = _structured(compiler)

    assert payload["apt_proxy"] == "http://proxy:3128"
    assert payload["apt_mirror"] == "http://mirror.example/ubuntu"
    assert payload["apt_sources"] == [{"source": "ppa:juju/stable", "key": "KEYDATA"}]
    assert payload["package_update"] is True
    assert payload["packages"] == ["curl"]
    assert payload["write_files"] == [
        {
            "path": "/etc/apt/preferences.d/juju",
            "content": "Package: *\nPin-Priority: 400\n",
            "permissions": "0644",
        }
    ]
    assert "apt_preferences" not in payload


def test_rendering_does_not_mutate_compiler() -> None:
    """Rendering twice gives identical output and leaves intent in place."""
    compiler = UbuntuCompiler()
    compiler.add_package_source(PackageSource("ppa:juju/stable"))
    compiler.add_package_preference(PackagePreference("/etc/apt/preferences.d/p", "x"))
    compiler.add_run_command("echo done")

    first_structured = compiler.render_structured()
    first_script = compiler.render_script()

    assert compiler.render_structured() == first_structured
    assert compiler.render_script() == first_script
    assert compiler.package_sources == [PackageSource("ppa:juju/stable")]
    assert len(compiler.package_preferences) == 1
    assert compiler.document.run_commands == ["echo done"]


def test_script_installs_packages_noninteractively() -> None:
    """Package commands start by exporting DEBIAN_FRONTEND."""
    compiler = UbuntuCompiler()
    compiler.add_package("curl")
    compiler.enable_system_upgrade()

    commands = compiler.package_commands()
    script = compiler.render_script()

    assert commands[0] == "export DEBIAN_FRONTEND=noninteractive"
    assert f"{APT_GET} upgrade" in commands
    assert commands[-1] == f"{APT_GET} install curl"
    assert f"{APT_GET} update" not in commands
    assert script.index(f"{APT_GET} upgrade") < script.index(f"{APT_GET} install curl")


def test_script_without_package_work_has_no_frontend_export() -> None:
    """Nothing apt-related is emitted when there is nothing to do."""
    compiler = UbuntuCompiler()
    compiler.add_run_command("echo hi")

    assert compiler.package_commands() == []
    assert "DEBIAN_FRONTEND" not in compiler.render_script()


def test_script_registers_sources_before_update() -> None:
    """Sources install add-apt-repository, import keys, then refresh the index."""
    compiler = UbuntuCompiler()
    compiler.add_package_source(PackageSource("deb http://repo.example/ stable main", "KEY"))
    compiler.add_package_source(PackageSource("ppa:juju/stable", "IGNORED"))

    commands = compiler.package_commands()

    tool = commands.index(f"{APT_GET} install software-properties-common")
    key = commands.index("printf '%s\\n' KEY | apt-key add -")
    repo = commands.index(
        f"add-apt-repository --yes {shquote('deb http://repo.example/ stable main')}"
    )
    update = commands.index(f"{APT_GET} update")
    assert tool < key < repo < update
    assert not any("IGNORED" in command for command in commands)


def test_cloud_archive_adds_source_and_pin() -> None:
    """The cloud-tools archive becomes an apt source plus a pin file."""
    compiler = UbuntuCompiler(series="trusty")
    compiler.add_cloud_archive_cloud_tools()

    payload = _structured(compiler)

    assert payload["apt_sources"] == [
        {
            "source": "deb http://ubuntu-cloud.archive.canonical.com/ubuntu "
            "trusty-updates/cloud-tools main"
        }
    ]
    assert payload["package_update"] is True
    [pin] = payload["write_files"]
    assert pin["path"] == "/etc/apt/preferences.d/50-cloud-tools"
    assert "Pin: release n=trusty-updates/cloud-tools" in pin["content"]

def test_mirror_switch_in_script() -> None:
    """A mirror change rewrites sources.list and renames cached lists."""
    compiler = UbuntuCompiler()
    compiler.set_package_mirror("http://mirror.example/ubuntu")

    commands = compiler.package_commands()

    assert commands[0] == "export DEBIAN_FRONTEND=noninteractive"
    assert any(command.startswith("old_mirror=$(awk") for command in commands)
    assert f"new_mirror={shquote('http://mirror.example/ubuntu')}" in commands
    assert '[ -z "$old_mirror" ] || sed -i s,$old_mirror,$new_mirror, /etc/apt/sources.list' in (
        commands
    )
    assert "lists_dir=/var/lib/apt/lists" in commands


def test_proxy_in_script_writes_apt_conf() -> None:
    """The script form writes the apt proxy configuration at boot."""
    compiler = UbuntuCompiler()
    compiler.set_package_proxy("http://proxy:3128")

    script = compiler.render_script()

    assert 'Acquire::http::Proxy "http://proxy:3128";' in script
    assert "/etc/apt/apt.conf.d/95-provisionctl-proxy" in script


def test_proxy_settings_become_boot_command() -> None:
    """Explicit proxy settings are written in both renderings."""
    compiler = UbuntuCompiler()
    compiler.set_proxy_settings(ProxySettings(https="https://proxy:3129"))

    payload = _structured(compiler)

    assert payload["bootcmd"] == [
        "printf '%s\\n' 'Acquire::https::Proxy \"https://proxy:3129\";' "
        "> /etc/apt/apt.conf.d/95-provisionctl-proxy"
    ]


def test_sources_with_updates_disabled_conflict() -> None:
    """Requesting sources while refusing updates is a configuration conflict."""
    compiler = UbuntuCompiler()
    compiler.add_package_source(PackageSource("ppa:juju/stable"))
    compiler.enable_system_update(False)

    with pytest.raises(ConfigConflict):
        compiler.render_structured()
    with pytest.raises(ConfigConflict):
        compiler.render_script()


def test_update_defaults_on_with_sources() -> None:
    """Leaving update unset turns it on once sources exist."""
    compiler = UbuntuCompiler()
    assert compiler.system_update is False
    compiler.add_package_source(PackageSource("ppa:juju/stable"))
    assert compiler.system_update is True


def test_coalesce_legacy_target_release() -> None:
    """The flag, release and package collapse into one install argument."""
    packages = ["curl", "--target-release", "precise-updates/cloud-tools", "cloud-utils", "git"]

    assert coalesce_packages(packages) == [
        "curl",
        "--target-release precise-updates/cloud-tools cloud-utils",
        "git",
    ]


def test_coalesced_triple_is_one_install_command() -> None:
    """A trusty cloud-tools triple installs with a single apt-get call."""
    compiler = UbuntuCompiler(series="trusty")
    for token in ["--target-release", "trusty-updates/cloud-tools", "foo"]:
        compiler.add_package(token)

    installs = [c for c in compiler.package_commands() if c.startswith(f"{APT_GET} install")]

    assert installs == [f"{APT_GET} install --target-release trusty-updates/cloud-tools foo"]


@pytest.mark.parametrize(
    "packages",
    [
        ["curl", "--target-release"],
        ["curl", "--target-release", "precise-updates/cloud-tools"],
    ],
)
def test_coalesce_rejects_truncated_triple(packages: list[str]) -> None:
    """A truncated triple names the offending tokens."""
    with pytest.raises(InvalidPackageSpec, match="--target-release"):
        coalesce_packages(packages)


def test_default_packages_on_precise_use_cloud_archive() -> None:
    """Default cloud-tools packages on precise install from the cloud archive."""
    compiler = UbuntuCompiler(series="precise")
    compiler.add_default_packages()

    assert compiler.packages[:2] == ["curl", "cpu-checker"]
    assert "--target-release" in compiler.packages
    assert (
        f"{APT_GET} install --target-release precise-updates/cloud-tools cloud-utils"
        in compiler.package_commands()
    )


def test_default_packages_elsewhere_are_plain() -> None:
    """Other series install the defaults directly."""
    compiler = UbuntuCompiler(series="jammy")
    compiler.add_default_packages()

    assert "--target-release" not in compiler.packages
    assert "cloud-image-utils" in compiler.packages


def _run_rename(lists: Path, new_mirror: str, old_mirror: str) -> None:
    commands = rename_apt_list_files_commands(new_mirror, old_mirror, lists_directory=str(lists))
    script = "\n".join(["set -e", *commands])
    subprocess.run(["bash", "-c", script], check=True)  # noqa: S603, S607


@requires_bash
def test_mirror_rename_moves_cached_lists(tmp_path: Path) -> None:
    """Cached index files follow the mirror switch."""
    (tmp_path / "archive.ubuntu.com_ubuntu_dists_jammy_InRelease").write_text("a")
    (tmp_path / "archive.ubuntu.com_ubuntu_dists_jammy_main_binary-amd64_Packages").write_text("b")
    (tmp_path / "security.ubuntu.com_ubuntu_dists_jammy_InRelease").write_text("c")

    _run_rename(tmp_path, "http://mirror.example/ubuntu/", "http://archive.ubuntu.com/ubuntu")

    assert sorted(path.name for path in tmp_path.iterdir()) == [
        "mirror.example_ubuntu_dists_jammy_InRelease",
        "mirror.example_ubuntu_dists_jammy_main_binary-amd64_Packages",
        "security.ubuntu.com_ubuntu_dists_jammy_InRelease",
    ]


@requires_bash
def test_mirror_rename_is_noop_for_same_mirror(tmp_path: Path) -> None:
    """Switching to the same mirror leaves the cache untouched."""
    cached = tmp_path / "archive.ubuntu.com_ubuntu_dists_jammy_InRelease"
    cached.write_text("a")

    _run_rename(tmp_path, "http://archive.ubuntu.com/ubuntu/", "http://archive.ubuntu.com/ubuntu")

    assert [path.name for path in tmp_path.iterdir()] == [cached.name]


@requires_bash
def test_mirror_rename_with_empty_cache(tmp_path: Path) -> None:
    """An empty list cache is a no-op rather than an error."""
    _run_rename(tmp_path, "http://mirror.example/ubuntu", "http://archive.ubuntu.com/ubuntu")

    assert list(tmp_path.iterdir()) == []


@requires_bash
def test_mirror_switch_without_configured_mirror_is_noop(tmp_path: Path) -> None:
    """Hosts without a matching deb line skip the switch and keep going."""
    sources = tmp_path / "sources.list"
    sources.write_text("# See /etc/apt/sources.list.d/ubuntu.sources\n")
    lists = tmp_path / "lists"
    lists.mkdir()
    (lists / "_stray").write_text("x")
    commands = apt_mirror_commands(
        "http://mirror.example/ubuntu",
        sources_file=str(sources),
        lists_directory=str(lists),
    )
    script = "\n".join(["set -e", *commands, "echo finished"])

    result = subprocess.run(  # noqa: S603, S607
        ["bash", "-c", script], capture_output=True, text=True, check=False
    )

    assert result.returncode == 0, result.stderr
    assert result.stdout.strip() == "finished"
    assert sources.read_text() == "# See /etc/apt/sources.list.d/ubuntu.sources\n"
    assert [path.name for path in lists.iterdir()] == ["_stray"]
