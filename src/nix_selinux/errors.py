"""Exception types raised by the build and provisioning layers."""

from __future__ import annotations

from typing import Literal, Sequence

BuildPhase = Literal["compile", "package"]

# Shell conventions for "command not found" and "not executable".
TOOL_NOT_FOUND_EXIT_CODE = 127
TOOL_NOT_EXECUTABLE_EXIT_CODE = 126


class BuildError(Exception):
    """A build step failed while running an external SELinux tool."""

    phase: BuildPhase

    def __init__(
        self,
        message: str,
        *,
        step: str | None = None,
        command: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.message = message
        self.step = step
        self.command = tuple(command)
        self.returncode = returncode
        self.stderr = stderr

    @property
    def exit_code(self) -> int:
        """Process exit code to surface to the caller of the build."""

        if self.returncode is not None and 0 < self.returncode < 256:
            return self.returncode
        return 1

    def with_step(self, step: str) -> "BuildError":
        """Attach the owning step name and return self."""

        self.step = step
        return self

    def __str__(self) -> str:
        parts = [self.message]
        if self.step is not None:
            parts.append(f"step={self.step}")
        phase = getattr(self, "phase", None)
        if phase is not None:
            parts.append(f"phase={phase}")
        if self.returncode is not None:
            parts.append(f"returncode={self.returncode}")
        stderr = self.stderr.strip()
        if stderr:
            parts.append(f"stderr={stderr}")
        return " ".join(parts)


class CompileError(BuildError):
    """checkmodule failed to compile a policy source into a module object."""

    phase: BuildPhase = "compile"


class PackageError(BuildError):
    """semodule_package failed to bind a module and file contexts into a package."""

    phase: BuildPhase = "package"


class ProvisionError(Exception):
    """A built policy package could not be provisioned."""
