"""Sequential compile-then-package orchestration over the configured build steps."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Sequence
from uuid import uuid4

from nix_selinux.build.steps import ResolvedBuildStep, resolve_steps
from nix_selinux.build.toolchain import (
    build_checkmodule_command,
    build_semodule_package_command,
    compile_module,
    package_module,
)
from nix_selinux.build.writer import run_artifact_paths, write_run_artifacts
from nix_selinux.config import AppSettings, ToolsConfig
from nix_selinux.errors import BuildError
from nix_selinux.utils.paths import sha256_file
from nix_selinux.utils.time_utils import now_utc

LOGGER = logging.getLogger(__name__)

StepStatus = Literal["success", "failed", "planned"]
StepPhase = Literal["compile", "package"]


@dataclass(frozen=True, slots=True)
class BuildRunOptions:
    """Runtime options for a build run."""

    only: tuple[str, ...] | None = None
    dry_run: bool = False
    clean_modules: bool = False


@dataclass(frozen=True, slots=True)
class StepResult:
    """Outcome of one compile-then-package step."""

    resolved: ResolvedBuildStep
    status: StepStatus
    phase: StepPhase | None
    commands: tuple[tuple[str, ...], ...] = ()
    package_sha256: str | None = None
    duration_sec: float = 0.0
    error: BuildError | None = None

    @property
    def name(self) -> str:
        return self.resolved.name

    @property
    def success(self) -> bool:
        return self.status == "success"

    def as_row(self, run_id: str) -> dict[str, Any]:
        return {
            "run_id": run_id,
            "step": self.name,
            "status": self.status,
            "phase": self.phase,
            "source_path": str(self.resolved.source_path),
            "file_contexts_path": str(self.resolved.file_contexts_path),
            "module_path": str(self.resolved.module_path),
            "package_path": str(self.resolved.package_path),
            "package_sha256": self.package_sha256,
            "returncode": self.error.returncode if self.error is not None else None,
            "duration_sec": round(self.duration_sec, 3),
            "error_message": str(self.error) if self.error is not None else None,
        }


@dataclass(frozen=True, slots=True)
class BuildRunResult:
    """Return object for build run outcomes."""

    run_id: str
    step_results: tuple[StepResult, ...]
    skipped_steps: tuple[str, ...]
    summary: dict[str, Any]
    summary_path: Path
    step_results_path: Path
    error: BuildError | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.error is None else self.error.exit_code

    @property
    def packages(self) -> dict[str, Path]:
        """Built package paths keyed by step name, successful steps only."""

        return {result.name: result.resolved.package_path for result in self.step_results if result.success}

    def raise_for_failure(self) -> None:
        """Re-raise the error that halted the run, if any."""

        if self.error is not None:
            raise self.error


def plan_step_commands(resolved: ResolvedBuildStep, tools: ToolsConfig) -> tuple[tuple[str, ...], ...]:
    """Return the compile and package argv a step would run."""

    return (
        tuple(build_checkmodule_command(tools, resolved.source_path, resolved.module_path)),
        tuple(
            build_semodule_package_command(
                tools,
                resolved.module_path,
                resolved.file_contexts_path,
                resolved.package_path,
            )
        ),
    )


def _unlink_stale(path: Path, step: str, logger: logging.Logger) -> None:
    if path.exists():
        path.unlink()
        logger.info("build_step.stale_removed step=%s path=%s", step, path)


def discard_previous_outputs(resolved: ResolvedBuildStep, logger: logging.Logger | None = None) -> None:
    """Remove a step's package and module left by an earlier run before it is rebuilt."""

    effective_logger = logger or LOGGER
    _unlink_stale(resolved.package_path, resolved.name, effective_logger)
    _unlink_stale(resolved.module_path, resolved.name, effective_logger)


def run_build_step(
    resolved: ResolvedBuildStep,
    tools: ToolsConfig,
    *,
    logger: logging.Logger | None = None,
) -> StepResult:
    """Compile the step's source afresh, then package it with the step's file contexts."""

    effective_logger = logger or LOGGER
    commands = plan_step_commands(resolved, tools)
    started = time.monotonic()
    discard_previous_outputs(resolved, logger=effective_logger)

    effective_logger.info(
        "build_step.compile step=%s source=%s module=%s",
        resolved.name,
        resolved.source_path,
        resolved.module_path,
    )
    try:
        compile_module(resolved.source_path, resolved.module_path, tools, logger=effective_logger)
    except BuildError as exc:
        return StepResult(
            resolved=resolved,
            status="failed",
            phase="compile",
            commands=commands,
            duration_sec=time.monotonic() - started,
            error=exc.with_step(resolved.name),
        )

    effective_logger.info(
        "build_step.package step=%s file_contexts=%s package=%s",
        resolved.name,
        resolved.file_contexts_path,
        resolved.package_path,
    )
    try:
        package_module(
            resolved.module_path,
            resolved.file_contexts_path,
            resolved.package_path,
            tools,
            logger=effective_logger,
        )
    except BuildError as exc:
        return StepResult(
            resolved=resolved,
            status="failed",
            phase="package",
            commands=commands,
            duration_sec=time.monotonic() - started,
            error=exc.with_step(resolved.name),
        )

    return StepResult(
        resolved=resolved,
        status="success",
        phase="package",
        commands=commands,
        package_sha256=sha256_file(resolved.package_path),
        duration_sec=time.monotonic() - started,
    )


def run_build_steps(
    steps: Sequence[ResolvedBuildStep],
    tools: ToolsConfig,
    *,
    dry_run: bool = False,
    logger: logging.Logger | None = None,
) -> tuple[list[StepResult], list[str]]:
    """Run steps in order, halting at the first failure.

    Returns the results of the steps that ran and the names of the steps that
    were never started because an earlier step failed.
    """

    effective_logger = logger or LOGGER
    results: list[StepResult] = []
    for index, resolved in enumerate(steps):
        if dry_run:
            results.append(
                StepResult(
                    resolved=resolved,
                    status="planned",
                    phase=None,
                    commands=plan_step_commands(resolved, tools),
                )
            )
            continue

        result = run_build_step(resolved, tools, logger=effective_logger)
        results.append(result)
        if result.error is not None:
            skipped = [item.name for item in steps[index + 1 :]]
            built = {item.resolved.package_path for item in results if item.success}
            for item in steps[index + 1 :]:
                if item.package_path not in built:
                    _unlink_stale(item.package_path, item.name, effective_logger)
            effective_logger.error(
                "build_run.step_failed step=%s phase=%s returncode=%s skipped=%s stderr=%s",
                result.name,
                result.phase,
                result.error.returncode,
                ",".join(skipped) or "-",
                result.error.stderr.strip(),
            )
            return results, skipped
        effective_logger.info(
            "build_run.step_done step=%s package=%s sha256=%s duration_sec=%.3f",
            result.name,
            result.resolved.package_path,
            result.package_sha256,
            result.duration_sec,
        )
    return results, []


def remove_module_objects(steps: Sequence[ResolvedBuildStep], logger: logging.Logger | None = None) -> list[Path]:
    """Delete the transient module objects written by the given steps."""

    effective_logger = logger or LOGGER
    removed: list[Path] = []
    for module_path in dict.fromkeys(step.module_path for step in steps):
        if module_path.exists():
            module_path.unlink()
            removed.append(module_path)
            effective_logger.info("build_run.module_removed path=%s", module_path)
    return removed


def _failure_summary(error: BuildError | None) -> dict[str, Any] | None:
    if error is None:
        return None
    return {
        "step": error.step,
        "phase": error.phase,
        "returncode": error.returncode,
        "exit_code": error.exit_code,
        "command": list(error.command),
        "message": error.message,
        "stderr": error.stderr,
    }


def run_build_pipeline(
    settings: AppSettings,
    *,
    options: BuildRunOptions | None = None,
    logger: logging.Logger | None = None,
) -> BuildRunResult:
    """Build every selected policy package in configured order, stopping at the first failure."""

    effective_logger = logger or LOGGER
    run_options = options or BuildRunOptions()

    run_id = f"build-run-{uuid4().hex[:12]}"
    started_ts = now_utc()
    started_mono = time.monotonic()

    steps = resolve_steps(settings, run_options.only)
    effective_logger.info(
        "build_run.start run_id=%s project=%s env=%s steps=%s source_root=%s output_root=%s dry_run=%s",
        run_id,
        settings.project.name,
        settings.project.env,
        ",".join(step.name for step in steps),
        settings.paths.source_root,
        settings.paths.output_root,
        run_options.dry_run,
    )

    results, skipped = run_build_steps(
        steps,
        settings.tools,
        dry_run=run_options.dry_run,
        logger=effective_logger,
    )
    error = next((result.error for result in results if result.error is not None), None)

    removed_modules: list[Path] = []
    if run_options.clean_modules and error is None and not run_options.dry_run:
        removed_modules = remove_module_objects(steps, logger=effective_logger)

    finished_ts = now_utc()
    duration_sec = time.monotonic() - started_mono
    artifact_paths = run_artifact_paths(settings.paths.artifacts_root, run_id)

    summary: dict[str, Any] = {
        "run_id": run_id,
        "project": settings.project.name,
        "env": settings.project.env,
        "started_ts": started_ts.isoformat(),
        "finished_ts": finished_ts.isoformat(),
        "duration_sec": round(duration_sec, 3),
        "dry_run": run_options.dry_run,
        "source_root": str(settings.paths.source_root),
        "output_root": str(settings.paths.output_root),
        "steps_selected": [step.name for step in steps],
        "steps_succeeded": [result.name for result in results if result.success],
        "steps_skipped": skipped,
        "failure": _failure_summary(error),
        "packages": {
            result.name: {
                "path": str(result.resolved.package_path),
                "sha256": result.package_sha256,
            }
            for result in results
            if result.success
        },
        "commands": {result.name: [list(command) for command in result.commands] for result in results},
        "modules_removed": [str(path) for path in removed_modules],
        "outputs": {
            "summary_path": str(artifact_paths.summary_path),
            "step_results_path": str(artifact_paths.step_results_path),
        },
    }
    write_run_artifacts(
        paths=artifact_paths,
        summary=summary,
        step_rows=[result.as_row(run_id) for result in results],
    )

    effective_logger.info(
        "build_run.complete run_id=%s success=%s succeeded=%s skipped=%s summary_path=%s",
        run_id,
        error is None,
        len(summary["steps_succeeded"]),
        len(skipped),
        artifact_paths.summary_path,
    )

    return BuildRunResult(
        run_id=run_id,
        step_results=tuple(results),
        skipped_steps=tuple(skipped),
        summary=summary,
        summary_path=artifact_paths.summary_path,
        step_results_path=artifact_paths.step_results_path,
        error=error,
    )
