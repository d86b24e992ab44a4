"""Shared fixtures: a policy source tree and stand-ins for the SELinux userspace tools."""

from __future__ import annotations

import logging
import os
import stat
import sys
from pathlib import Path
from typing import Iterator

import pytest

from nix_selinux.config import AppSettings, PathsConfig, ToolsConfig
from nix_selinux.logging_utils import DEFAULT_LOG_FORMAT

TOOL_LOG_ENV = "FAKE_SELINUX_TOOL_LOG"

FAKE_CHECKMODULE = """\
import os, re, sys
args = sys.argv[1:]
with open(os.environ["{log_env}"], "a", encoding="utf-8") as log:
    log.write("checkmodule " + " ".join(args) + "\\n")
out = args[args.index("-o") + 1]
source = args[-1]
if "-m" not in args or args[args.index("-c") + 1] != "5":
    sys.stderr.write("checkmodule: unexpected flags\\n")
    sys.exit(2)
try:
    text = open(source, encoding="utf-8").read()
except OSError:
    sys.stderr.write("checkmodule: unable to open " + source + "\\n")
    sys.exit(1)
if "CORRUPT" in text:
    sys.stderr.write(source + ":1:ERROR 'syntax error'\\n")
    sys.exit(1)
types = sorted(set(re.findall(r"^\\s*type\\s+(\\w+)\\s*;", text, re.M)))
with open(out, "w", encoding="utf-8") as handle:
    handle.write("MOD\\n" + "\\n".join(types) + "\\n")
"""

FAKE_SEMODULE_PACKAGE = """\
import os, re, sys
args = sys.argv[1:]
with open(os.environ["{log_env}"], "a", encoding="utf-8") as log:
    log.write("semodule_package " + " ".join(args) + "\\n")
out = args[args.index("-o") + 1]
module = args[args.index("-m") + 1]
contexts = args[args.index("-f") + 1]
try:
    module_text = open(module, encoding="utf-8").read()
except OSError:
    sys.stderr.write("semodule_package: unable to open module " + module + "\\n")
    sys.exit(1)
try:
    contexts_text = open(contexts, encoding="utf-8").read()
except OSError:
    sys.stderr.write("semodule_package: unable to open file contexts " + contexts + "\\n")
    sys.exit(1)
declared = set(module_text.split("\\n")[1:])
for label in re.findall(r"system_u:object_r:(\\w+)", contexts_text):
    if label not in declared:
        sys.stderr.write("semodule_package: type " + label + " is not defined\\n")
        sys.exit(1)
with open(out, "w", encoding="utf-8") as handle:
    handle.write("PP\\n" + module_text + contexts_text)
"""

NIX_TE = """\
policy_module(nix, 1.0.0)

type nix_store_t;
type nix_daemon_exec_t;
"""

NIX_FC = """\
/nix/store(/.*)?    system_u:object_r:nix_store_t:s0
/nix/var/nix/profiles/default/bin/nix-daemon    --  system_u:object_r:nix_daemon_exec_t:s0
"""

DETERMINATE_NIX_FC = """\
/nix/store(/.*)?    system_u:object_r:nix_store_t:s0
/usr/local/bin/determinate-nixd    --  system_u:object_r:nix_daemon_exec_t:s0
"""

NIX_BOOTC_TE = """\
policy_module(nix-bootc, 1.0.0)

type nix_bootc_store_t;
"""

NIX_BOOTC_FC = """\
/var/nix/store(/.*)?    system_u:object_r:nix_bootc_store_t:s0
"""

POLICY_SOURCES = {
    "nix.te": NIX_TE,
    "nix.fc": NIX_FC,
    "determinate-nix.fc": DETERMINATE_NIX_FC,
    "nix-bootc.te": NIX_BOOTC_TE,
    "nix-bootc.fc": NIX_BOOTC_FC,
}


def _write_tool(path: Path, body: str) -> Path:
    path.write_text(f"#!{sys.executable}\n" + body.format(log_env=TOOL_LOG_ENV), encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def tool_log(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    log_path = tmp_path / "tool_calls.log"
    log_path.touch()
    monkeypatch.setenv(TOOL_LOG_ENV, str(log_path))
    return log_path


@pytest.fixture
def fake_tools(tmp_path: Path, tool_log: Path) -> ToolsConfig:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    checkmodule = _write_tool(bin_dir / "checkmodule", FAKE_CHECKMODULE)
    semodule_package = _write_tool(bin_dir / "semodule_package", FAKE_SEMODULE_PACKAGE)
    return ToolsConfig(checkmodule=str(checkmodule), semodule_package=str(semodule_package), timeout_sec=60)


@pytest.fixture
def source_root(tmp_path: Path) -> Path:
    root = tmp_path / "selinux"
    root.mkdir()
    for name, content in POLICY_SOURCES.items():
        (root / name).write_text(content, encoding="utf-8")
    return root


@pytest.fixture
def settings(tmp_path: Path, source_root: Path, fake_tools: ToolsConfig) -> AppSettings:
    paths = PathsConfig(
        source_root=source_root,
        output_root=tmp_path / "out",
        artifacts_root=tmp_path / "artifacts",
        logs_root=tmp_path / "logs",
        provision_root=tmp_path / "etc" / "nix-installer" / "selinux" / "packages",
    )
    return AppSettings(paths=paths, tools=fake_tools)


@pytest.fixture
def tool_calls(tool_log: Path):
    """Return a reader for the (tool, argv) pairs the fake tools recorded, in call order."""

    def _read() -> list[tuple[str, list[str]]]:
        calls: list[tuple[str, list[str]]] = []
        for line in tool_log.read_text(encoding="utf-8").splitlines():
            if line:
                tool, *argv = line.split(" ")
                calls.append((tool, argv))
        return calls

    return _read


@pytest.fixture(autouse=True)
def _isolate_settings_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("NIX_SELINUX_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _drop_configured_log_handlers() -> Iterator[None]:
    """Detach handlers installed by configure_logging so later tests never write to stale streams."""

    yield
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        formatter = handler.formatter
        if formatter is not None and formatter._fmt == DEFAULT_LOG_FORMAT:
            root_logger.removeHandler(handler)
            handler.close()
