"""Policy package build: step descriptors, tool wrappers, and the orchestrating pipeline."""

from nix_selinux.build.pipeline import (
    BuildRunOptions,
    BuildRunResult,
    StepResult,
    run_build_pipeline,
    run_build_step,
    run_build_steps,
)
from nix_selinux.build.preflight import MissingInput, ToolStatus, check_inputs, check_tools
from nix_selinux.build.steps import BuildStep, ResolvedBuildStep, configured_steps, resolve_steps, select_steps
from nix_selinux.build.toolchain import ToolResult, compile_module, package_module, run_tool

__all__ = [
    "BuildRunOptions",
    "BuildRunResult",
    "StepResult",
    "run_build_pipeline",
    "run_build_step",
    "run_build_steps",
    "MissingInput",
    "ToolStatus",
    "check_inputs",
    "check_tools",
    "BuildStep",
    "ResolvedBuildStep",
    "configured_steps",
    "resolve_steps",
    "select_steps",
    "ToolResult",
    "compile_module",
    "package_module",
    "run_tool",
]
