import sys
from pathlib import Path

import pytest

from nix_selinux.build.toolchain import (
    build_checkmodule_command,
    build_semodule_package_command,
    compile_module,
    package_module,
    run_tool,
)
from nix_selinux.config import ToolsConfig
from nix_selinux.errors import TOOL_NOT_EXECUTABLE_EXIT_CODE, TOOL_NOT_FOUND_EXIT_CODE, CompileError, PackageError


def test_checkmodule_command_matches_mls_non_base_module_invocation(tmp_path: Path) -> None:
    command = build_checkmodule_command(ToolsConfig(), tmp_path / "nix.te", tmp_path / "nix.mod")

    assert command == ["checkmodule", "-M", "-m", "-c", "5", "-o", str(tmp_path / "nix.mod"), str(tmp_path / "nix.te")]


def test_checkmodule_command_without_mls(tmp_path: Path) -> None:
    command = build_checkmodule_command(ToolsConfig(mls=False), tmp_path / "a.te", tmp_path / "a.mod")

    assert "-M" not in command
    assert command[1:4] == ["-m", "-c", "5"]


def test_semodule_package_command(tmp_path: Path) -> None:
    command = build_semodule_package_command(
        ToolsConfig(),
        tmp_path / "nix.mod",
        tmp_path / "determinate-nix.fc",
        tmp_path / "determinate-nix.pp",
    )

    assert command == [
        "semodule_package",
        "-o",
        str(tmp_path / "determinate-nix.pp"),
        "-m",
        str(tmp_path / "nix.mod"),
        "-f",
        str(tmp_path / "determinate-nix.fc"),
    ]


def test_compile_then_package(tmp_path: Path, source_root: Path, fake_tools: ToolsConfig) -> None:
    module = compile_module(source_root / "nix.te", tmp_path / "build" / "nix.mod", fake_tools)
    package = package_module(module, source_root / "nix.fc", tmp_path / "build" / "nix.pp", fake_tools)

    assert module.read_text(encoding="utf-8").startswith("MOD\n")
    assert package.read_text(encoding="utf-8").startswith("PP\n")


def test_compile_missing_source_raises_compile_error(tmp_path: Path, fake_tools: ToolsConfig) -> None:
    with pytest.raises(CompileError) as excinfo:
        compile_module(tmp_path / "absent.te", tmp_path / "absent.mod", fake_tools)

    assert excinfo.value.returncode == 1
    assert "unable to open" in excinfo.value.stderr
    assert excinfo.value.exit_code == 1


def test_package_missing_contexts_raises_package_error(
    tmp_path: Path,
    source_root: Path,
    fake_tools: ToolsConfig,
) -> None:
    module = compile_module(source_root / "nix.te", tmp_path / "nix.mod", fake_tools)

    with pytest.raises(PackageError) as excinfo:
        package_module(module, tmp_path / "absent.fc", tmp_path / "nix.pp", fake_tools)

    assert excinfo.value.phase == "package"
    assert not (tmp_path / "nix.pp").exists()


def test_missing_tool_binary_maps_to_command_not_found(tmp_path: Path) -> None:
    with pytest.raises(CompileError) as excinfo:
        run_tool([str(tmp_path / "no-such-checkmodule"), "-m"], error_cls=CompileError)

    assert excinfo.value.returncode == TOOL_NOT_FOUND_EXIT_CODE
    assert excinfo.value.exit_code == TOOL_NOT_FOUND_EXIT_CODE
    assert "tool not found" in str(excinfo.value)


def test_timeout_is_reported_without_returncode(tmp_path: Path) -> None:
    with pytest.raises(PackageError) as excinfo:
        run_tool(
            [sys.executable, "-c", "import time; time.sleep(5)"],
            error_cls=PackageError,
            timeout_sec=0.2,
        )

    assert excinfo.value.returncode is None
    assert excinfo.value.exit_code == 1
    assert "timed out" in excinfo.value.message


def test_non_executable_tool_maps_to_not_executable(tmp_path: Path) -> None:
    tool = tmp_path / "checkmodule"
    tool.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    tool.chmod(0o644)

    with pytest.raises(CompileError) as excinfo:
        run_tool([str(tool), "-m"], error_cls=CompileError)

    assert excinfo.value.returncode == TOOL_NOT_EXECUTABLE_EXIT_CODE
    assert excinfo.value.exit_code == TOOL_NOT_EXECUTABLE_EXIT_CODE
    assert "not executable" in str(excinfo.value)
