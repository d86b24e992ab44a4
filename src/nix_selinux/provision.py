"""Place a built policy package where the installer's SELinux provisioning expects it."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from nix_selinux.build.steps import configured_steps
from nix_selinux.config import AppSettings
from nix_selinux.errors import ProvisionError
from nix_selinux.utils.paths import copy_file_atomically, sha256_file

LOGGER = logging.getLogger(__name__)

# Every distribution variant is installed under the same module name.
PROVISIONED_PACKAGE_NAME = "nix.pp"


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    """Outcome of provisioning one policy package."""

    distribution: str
    source_path: Path
    destination_path: Path
    sha256: str
    changed: bool


def select_package(settings: AppSettings, distribution: str) -> Path:
    """Return the built package path for a distribution (a configured step name)."""

    for step in configured_steps(settings):
        if step.name == distribution:
            return step.resolve(settings.paths.source_root, settings.paths.output_root).package_path
    allowed = ",".join(step.name for step in configured_steps(settings))
    raise ProvisionError(f"unknown distribution: {distribution}; expected one of: {allowed}")


def provision_package(
    settings: AppSettings,
    distribution: str,
    *,
    destination: Path | None = None,
    logger: logging.Logger | None = None,
) -> ProvisionResult:
    """Copy the distribution's built package to the provisioning path, skipping identical content."""

    effective_logger = logger or LOGGER
    source_path = select_package(settings, distribution)
    if not source_path.is_file():
        raise ProvisionError(f"policy package not built: {source_path}; run the build first")

    destination_path = destination or settings.paths.provision_root / PROVISIONED_PACKAGE_NAME
    source_sha256 = sha256_file(source_path)

    if destination_path.is_file() and sha256_file(destination_path) == source_sha256:
        effective_logger.info(
            "provision.unchanged distribution=%s destination=%s sha256=%s",
            distribution,
            destination_path,
            source_sha256,
        )
        return ProvisionResult(
            distribution=distribution,
            source_path=source_path,
            destination_path=destination_path,
            sha256=source_sha256,
            changed=False,
        )

    try:
        copy_file_atomically(source_path, destination_path)
    except OSError as exc:
        raise ProvisionError(f"could not write {destination_path}: {exc}") from exc

    effective_logger.info(
        "provision.written distribution=%s source=%s destination=%s sha256=%s",
        distribution,
        source_path,
        destination_path,
        source_sha256,
    )
    return ProvisionResult(
        distribution=distribution,
        source_path=source_path,
        destination_path=destination_path,
        sha256=source_sha256,
        changed=True,
    )
