"""Thin wrappers around the SELinux userspace tools checkmodule and semodule_package."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from nix_selinux.config import ToolsConfig
from nix_selinux.errors import (
    TOOL_NOT_EXECUTABLE_EXIT_CODE,
    TOOL_NOT_FOUND_EXIT_CODE,
    BuildError,
    CompileError,
    PackageError,
)

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one external tool invocation."""

    command: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    duration_sec: float

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def build_checkmodule_command(tools: ToolsConfig, source_path: Path, module_path: Path) -> list[str]:
    """Return argv compiling a non-base module: `checkmodule [-M] -m -c <ver> -o <mod> <te>`."""

    command = [tools.checkmodule]
    if tools.mls:
        command.append("-M")
    command.extend(["-m", "-c", str(tools.policy_version), "-o", str(module_path), str(source_path)])
    return command


def build_semodule_package_command(
    tools: ToolsConfig,
    module_path: Path,
    file_contexts_path: Path,
    package_path: Path,
) -> list[str]:
    """Return argv packaging a module with file contexts: `semodule_package -o <pp> -m <mod> -f <fc>`."""

    return [
        tools.semodule_package,
        "-o",
        str(package_path),
        "-m",
        str(module_path),
        "-f",
        str(file_contexts_path),
    ]


def run_tool(
    command: Sequence[str],
    *,
    error_cls: type[BuildError],
    timeout_sec: float | None = None,
    logger: logging.Logger | None = None,
) -> ToolResult:
    """Run one tool to completion, raising error_cls on any non-success outcome."""

    effective_logger = logger or LOGGER
    argv = tuple(str(part) for part in command)
    effective_logger.debug("toolchain.exec command=%s", " ".join(argv))
    started = time.monotonic()
    try:
        completed = subprocess.run(
            argv,
            capture_output=True,
            text=True,
            timeout=timeout_sec,
            check=False,
        )
    except FileNotFoundError as exc:
        raise error_cls(
            f"tool not found: {argv[0]}",
            command=argv,
            returncode=TOOL_NOT_FOUND_EXIT_CODE,
            stderr=str(exc),
        ) from exc
    except PermissionError as exc:
        raise error_cls(
            f"tool not executable: {argv[0]}",
            command=argv,
            returncode=TOOL_NOT_EXECUTABLE_EXIT_CODE,
            stderr=str(exc),
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise error_cls(
            f"tool timed out after {timeout_sec}s: {argv[0]}",
            command=argv,
            returncode=None,
            stderr=_decode_partial(exc.stderr),
        ) from exc

    result = ToolResult(
        command=argv,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
        duration_sec=time.monotonic() - started,
    )
    if not result.ok:
        raise error_cls(
            f"{Path(argv[0]).name} exited with status {result.returncode}",
            command=argv,
            returncode=result.returncode,
            stderr=result.stderr,
        )
    effective_logger.debug(
        "toolchain.done tool=%s returncode=%s duration_sec=%.3f",
        Path(argv[0]).name,
        result.returncode,
        result.duration_sec,
    )
    return result


def _decode_partial(output: bytes | str | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output


def compile_module(
    source_path: Path,
    module_path: Path,
    tools: ToolsConfig,
    *,
    logger: logging.Logger | None = None,
) -> Path:
    """Compile a `.te` policy source into a `.mod` module object; raises CompileError."""

    module_path.parent.mkdir(parents=True, exist_ok=True)
    command = build_checkmodule_command(tools, source_path, module_path)
    run_tool(command, error_cls=CompileError, timeout_sec=tools.timeout_sec, logger=logger)
    return module_path


def package_module(
    module_path: Path,
    file_contexts_path: Path,
    package_path: Path,
    tools: ToolsConfig,
    *,
    logger: logging.Logger | None = None,
) -> Path:
    """Bind a module object and its file contexts into a `.pp` policy package; raises PackageError."""

    package_path.parent.mkdir(parents=True, exist_ok=True)
    command = build_semodule_package_command(tools, module_path, file_contexts_path, package_path)
    run_tool(command, error_cls=PackageError, timeout_sec=tools.timeout_sec, logger=logger)
    return package_path
