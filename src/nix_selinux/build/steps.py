"""Declarative build-step descriptors and their resolution to concrete paths."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Sequence

from nix_selinux.config import AppSettings, BuildStepConfig

MODULE_SUFFIX = ".mod"
PACKAGE_SUFFIX = ".pp"


@dataclass(frozen=True, slots=True)
class BuildStep:
    """Compile `source`, then package the module with `file_contexts` as `output_name`.pp."""

    name: str
    source: str
    file_contexts: str
    output_name: str

    @classmethod
    def from_config(cls, config: BuildStepConfig) -> "BuildStep":
        return cls(
            name=config.name,
            source=config.source,
            file_contexts=config.file_contexts,
            output_name=config.output_name,
        )

    @property
    def module_name(self) -> str:
        # Steps sharing a source share (and overwrite) one module file.
        return f"{Path(self.source).stem}{MODULE_SUFFIX}"

    @property
    def package_name(self) -> str:
        return f"{self.output_name}{PACKAGE_SUFFIX}"

    def resolve(self, source_root: Path, output_root: Path) -> "ResolvedBuildStep":
        """Bind this step to absolute input and output locations."""

        return ResolvedBuildStep(
            step=self,
            source_path=(source_root / self.source).resolve(strict=False),
            file_contexts_path=(source_root / self.file_contexts).resolve(strict=False),
            module_path=(output_root / self.module_name).resolve(strict=False),
            package_path=(output_root / self.package_name).resolve(strict=False),
        )


@dataclass(frozen=True, slots=True)
class ResolvedBuildStep:
    """A build step with every path it reads or writes made explicit."""

    step: BuildStep
    source_path: Path
    file_contexts_path: Path
    module_path: Path
    package_path: Path

    @property
    def name(self) -> str:
        return self.step.name

    def input_paths(self) -> tuple[Path, Path]:
        return self.source_path, self.file_contexts_path


def configured_steps(settings: AppSettings) -> list[BuildStep]:
    """Return the configured build sequence in execution order."""

    return [BuildStep.from_config(item) for item in settings.build.steps]


def select_steps(steps: Sequence[BuildStep], only: Iterable[str] | None) -> list[BuildStep]:
    """Filter steps by name while keeping the configured order."""

    if only is None:
        return list(steps)
    wanted = list(dict.fromkeys(only))
    known = {step.name for step in steps}
    unknown = [name for name in wanted if name not in known]
    if unknown:
        allowed = ",".join(step.name for step in steps)
        raise ValueError(f"unknown build step(s): {','.join(unknown)}; expected one of: {allowed}")
    wanted_set = set(wanted)
    return [step for step in steps if step.name in wanted_set]


def resolve_steps(settings: AppSettings, only: Iterable[str] | None = None) -> list[ResolvedBuildStep]:
    """Select and resolve configured steps against the configured source/output roots."""

    return [
        step.resolve(settings.paths.source_root, settings.paths.output_root)
        for step in select_steps(configured_steps(settings), only)
    ]
