"""Configuration models and loading logic."""

from __future__ import annotations

import os
from pathlib import Path
from typing import ClassVar

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_SETTINGS_FILE = Path("configs/settings.yaml")
SETTINGS_FILE_ENV = "NIX_SELINUX_SETTINGS_FILE"


class ProjectConfig(BaseModel):
    """Project metadata settings."""

    name: str = "nix_selinux"
    env: str = "dev"


class PathsConfig(BaseModel):
    """Filesystem locations for policy sources, build outputs, and run artifacts."""

    source_root: Path = Path("./selinux")
    output_root: Path = Path("./selinux")
    artifacts_root: Path = Path("./artifacts")
    logs_root: Path = Path("./logs")
    provision_root: Path = Path("/etc/nix-installer/selinux/packages")

    def resolved(self, project_root: Path) -> "PathsConfig":
        """Return a copy with project-relative paths resolved to absolute paths."""

        updates: dict[str, Path] = {}
        for field_name in type(self).model_fields:
            value = getattr(self, field_name)
            updates[field_name] = value if value.is_absolute() else (project_root / value).resolve()
        return self.model_copy(update=updates)


class ToolsConfig(BaseModel):
    """External SELinux userspace tools and the flags passed to them."""

    checkmodule: str = "checkmodule"
    semodule_package: str = "semodule_package"
    policy_version: int = Field(default=5, ge=1)
    mls: bool = True
    timeout_sec: float | None = Field(default=300.0, gt=0.0)


class BuildStepConfig(BaseModel):
    """One compile-then-package unit: a policy source paired with a file-context source."""

    name: str = Field(min_length=1)
    source: str = Field(min_length=1)
    file_contexts: str = Field(min_length=1)
    output_name: str = Field(min_length=1)


def default_build_steps() -> list[BuildStepConfig]:
    """Return the shipped step sequence: nix, determinate-nix, nix-bootc."""

    return [
        BuildStepConfig(name="nix", source="nix.te", file_contexts="nix.fc", output_name="nix"),
        BuildStepConfig(
            name="determinate-nix",
            source="nix.te",
            file_contexts="determinate-nix.fc",
            output_name="determinate-nix",
        ),
        BuildStepConfig(
            name="nix-bootc",
            source="nix-bootc.te",
            file_contexts="nix-bootc.fc",
            output_name="nix-bootc",
        ),
    ]


class BuildConfig(BaseModel):
    """Ordered build sequence."""

    steps: list[BuildStepConfig] = Field(default_factory=default_build_steps, min_length=1)

    @field_validator("steps")
    @classmethod
    def _unique_step_names(cls, steps: list[BuildStepConfig]) -> list[BuildStepConfig]:
        seen: set[str] = set()
        for step in steps:
            if step.name in seen:
                raise ValueError(f"duplicate build step name: {step.name}")
            seen.add(step.name)
        return steps


class AppSettings(BaseSettings):
    """Top-level application settings."""

    _yaml_file_override: ClassVar[Path | None] = None

    project: ProjectConfig = Field(default_factory=ProjectConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    build: BuildConfig = Field(default_factory=BuildConfig)

    model_config = SettingsConfigDict(
        env_prefix="NIX_SELINUX_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Use YAML defaults while allowing env vars to override values."""

        yaml_file = resolve_settings_file(cls._yaml_file_override)
        yaml_settings = YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            yaml_settings,
            file_secret_settings,
        )

    def as_dict(self) -> dict[str, object]:
        """Return settings as a standard nested dictionary."""

        return self.model_dump(mode="json")


def find_project_root(start: Path | None = None) -> Path:
    """Locate the project root by traversing upward for config markers."""

    current = (start or Path.cwd()).resolve()
    for candidate in (current, *current.parents):
        if (candidate / "configs/settings.yaml").exists():
            return candidate
    return current


def resolve_settings_file(override: Path | None = None) -> Path:
    """Resolve settings file from explicit override, env var, or default."""

    chosen = override
    if chosen is None:
        env_value = os.getenv(SETTINGS_FILE_ENV)
        if env_value:
            chosen = Path(env_value)
    if chosen is None:
        chosen = DEFAULT_SETTINGS_FILE

    if not chosen.is_absolute():
        chosen = (find_project_root() / chosen).resolve()
    return chosen


def load_settings(config_file: Path | None = None) -> AppSettings:
    """Load settings with YAML defaults and environment variable overrides."""

    settings_file = resolve_settings_file(config_file)
    project_root = settings_file.parent.parent.resolve()
    AppSettings._yaml_file_override = settings_file
    try:
        settings = AppSettings()
    finally:
        AppSettings._yaml_file_override = None
    resolved_paths = settings.paths.resolved(project_root=project_root)
    return settings.model_copy(update={"paths": resolved_paths})


def with_path_overrides(
    settings: AppSettings,
    *,
    source_root: Path | None = None,
    output_root: Path | None = None,
) -> AppSettings:
    """Return settings with CLI-provided source/output roots applied."""

    updates: dict[str, Path] = {}
    if source_root is not None:
        updates["source_root"] = source_root.resolve()
    if output_root is not None:
        updates["output_root"] = output_root.resolve()
    if not updates:
        return settings
    return settings.model_copy(update={"paths": settings.paths.model_copy(update=updates)})
