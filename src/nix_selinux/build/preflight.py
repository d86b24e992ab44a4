"""Pre-build checks for policy inputs and SELinux userspace tools."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from nix_selinux.build.steps import ResolvedBuildStep
from nix_selinux.config import ToolsConfig

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class MissingInput:
    """An input file a step needs that does not exist."""

    step: str
    path: Path


@dataclass(frozen=True, slots=True)
class ToolStatus:
    """Resolution of one configured tool against PATH."""

    name: str
    configured: str
    resolved: Path | None

    @property
    def available(self) -> bool:
        return self.resolved is not None


def check_inputs(steps: Sequence[ResolvedBuildStep], logger: logging.Logger | None = None) -> list[MissingInput]:
    """List every missing `.te`/`.fc` input, each path reported once, in step order."""

    effective_logger = logger or LOGGER
    missing: list[MissingInput] = []
    seen: set[Path] = set()
    for step in steps:
        for path in step.input_paths():
            if path in seen:
                continue
            seen.add(path)
            if not path.is_file():
                effective_logger.warning("preflight.input_missing step=%s path=%s", step.name, path)
                missing.append(MissingInput(step=step.name, path=path))
    return missing


def check_tools(tools: ToolsConfig, logger: logging.Logger | None = None) -> list[ToolStatus]:
    """Resolve checkmodule and semodule_package the way subprocess will find them."""

    effective_logger = logger or LOGGER
    statuses: list[ToolStatus] = []
    for name, configured in (("checkmodule", tools.checkmodule), ("semodule_package", tools.semodule_package)):
        found = shutil.which(configured)
        status = ToolStatus(name=name, configured=configured, resolved=Path(found) if found else None)
        if not status.available:
            effective_logger.warning("preflight.tool_missing tool=%s configured=%s", name, configured)
        statuses.append(status)
    return statuses
