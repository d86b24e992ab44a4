"""Typer CLI entrypoint for nix_selinux."""

from __future__ import annotations

import logging
from pathlib import Path

import typer
import yaml

from nix_selinux.build.pipeline import BuildRunOptions, plan_step_commands, run_build_pipeline
from nix_selinux.build.preflight import check_inputs, check_tools
from nix_selinux.build.steps import configured_steps, resolve_steps, select_steps
from nix_selinux.config import AppSettings, load_settings, with_path_overrides
from nix_selinux.errors import ProvisionError
from nix_selinux.logging_utils import BUILD_LOG_FILE, configure_logging
from nix_selinux.provision import provision_package

app = typer.Typer(
    add_completion=False,
    help="Build the Nix SELinux policy packages with checkmodule and semodule_package.",
    no_args_is_help=True,
)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    help="Optional settings YAML path.",
    exists=False,
    file_okay=True,
    dir_okay=False,
    readable=True,
)
SOURCE_ROOT_OPTION = typer.Option(
    None,
    "--source-root",
    help="Directory holding the .te/.fc policy sources.",
    file_okay=False,
    dir_okay=True,
)
OUTPUT_ROOT_OPTION = typer.Option(
    None,
    "--output-root",
    help="Directory receiving .mod and .pp outputs.",
    file_okay=False,
    dir_okay=True,
)


def _load_and_optionally_configure_logger(
    config_file: Path | None,
    configure: bool,
    *,
    source_root: Path | None = None,
    output_root: Path | None = None,
) -> tuple[AppSettings, logging.Logger]:
    settings = load_settings(config_file=config_file)
    settings = with_path_overrides(settings, source_root=source_root, output_root=output_root)
    if configure:
        logger = configure_logging(settings.paths.logs_root / BUILD_LOG_FILE)
    else:
        logger = logging.getLogger("nix_selinux")
    return settings, logger


def _parse_step_csv(value: str | None) -> tuple[str, ...] | None:
    if value is None:
        return None
    names = tuple(part.strip() for part in value.split(",") if part.strip() != "")
    if not names:
        raise typer.BadParameter("only must contain at least one step name.")
    return names


@app.command("show-config")
def show_config(config_file: Path | None = CONFIG_FILE_OPTION) -> None:
    """Print the effective configuration after env overrides."""

    settings, _ = _load_and_optionally_configure_logger(config_file, configure=False)
    rendered = yaml.safe_dump(settings.as_dict(), sort_keys=False)
    typer.echo(rendered)


@app.command("list-steps")
def list_steps(
    source_root: Path | None = SOURCE_ROOT_OPTION,
    output_root: Path | None = OUTPUT_ROOT_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Print the configured build sequence with resolved paths and commands."""

    settings, _ = _load_and_optionally_configure_logger(
        config_file,
        configure=False,
        source_root=source_root,
        output_root=output_root,
    )
    for index, step in enumerate(resolve_steps(settings), start=1):
        typer.echo(f"{index}. {step.name}")
        typer.echo(f"   source: {step.source_path}")
        typer.echo(f"   file_contexts: {step.file_contexts_path}")
        typer.echo(f"   module: {step.module_path}")
        typer.echo(f"   package: {step.package_path}")
        for command in plan_step_commands(step, settings.tools):
            typer.echo(f"   $ {' '.join(command)}")


@app.command("check-inputs")
def check_inputs_cmd(
    source_root: Path | None = SOURCE_ROOT_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Report missing .te/.fc inputs; exits 1 when any is missing."""

    settings, logger = _load_and_optionally_configure_logger(
        config_file,
        configure=False,
        source_root=source_root,
    )
    missing = check_inputs(resolve_steps(settings), logger=logger)
    if not missing:
        typer.echo(f"inputs_ok: {settings.paths.source_root}")
        return
    for item in missing:
        typer.echo(f"missing: {item.path} (step {item.step})", err=True)
    raise typer.Exit(code=1)


@app.command("check-tools")
def check_tools_cmd(config_file: Path | None = CONFIG_FILE_OPTION) -> None:
    """Report whether checkmodule and semodule_package resolve; exits 1 when any is missing."""

    settings, logger = _load_and_optionally_configure_logger(config_file, configure=False)
    statuses = check_tools(settings.tools, logger=logger)
    for status in statuses:
        typer.echo(f"{status.name}: {status.resolved if status.available else 'MISSING'}")
    if not all(status.available for status in statuses):
        raise typer.Exit(code=1)


@app.command("build")
def build(
    only: str | None = typer.Option(
        None,
        "--only",
        help="Comma-separated step names to run; configured order is kept.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Print the commands each step would run without running them.",
    ),
    clean_modules: bool = typer.Option(
        False,
        "--clean-modules",
        help="Remove transient .mod files after a fully successful build.",
    ),
    source_root: Path | None = SOURCE_ROOT_OPTION,
    output_root: Path | None = OUTPUT_ROOT_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Compile and package every policy in order, stopping at the first failure."""

    settings, logger = _load_and_optionally_configure_logger(
        config_file,
        configure=True,
        source_root=source_root,
        output_root=output_root,
    )
    only_steps = _parse_step_csv(only)
    try:
        select_steps(configured_steps(settings), only_steps)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--only") from exc

    options = BuildRunOptions(
        only=only_steps,
        dry_run=dry_run,
        clean_modules=clean_modules,
    )
    result = run_build_pipeline(settings, options=options, logger=logger)

    typer.echo(f"run_id: {result.run_id}")
    for step_result in result.step_results:
        if dry_run:
            for command in step_result.commands:
                typer.echo(f"{step_result.name}: $ {' '.join(command)}")
            continue
        if step_result.success:
            typer.echo(f"{step_result.name}: ok {step_result.resolved.package_path}")
        else:
            typer.echo(f"{step_result.name}: FAILED ({step_result.phase})")
    for name in result.skipped_steps:
        typer.echo(f"{name}: skipped")
    typer.echo(f"summary_path: {result.summary_path}")

    if result.error is not None:
        typer.echo(f"error: {result.error}", err=True)
        raise typer.Exit(code=result.exit_code)


@app.command("provision")
def provision(
    distribution: str = typer.Option(
        "nix",
        "--distribution",
        help="Which built package to provision: a configured step name such as nix or determinate-nix.",
    ),
    destination: Path | None = typer.Option(
        None,
        "--destination",
        help="Override the provisioned package path.",
        dir_okay=False,
    ),
    output_root: Path | None = OUTPUT_ROOT_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Copy a built policy package into the installer's provisioning location."""

    settings, logger = _load_and_optionally_configure_logger(
        config_file,
        configure=True,
        output_root=output_root,
    )
    try:
        result = provision_package(settings, distribution, destination=destination, logger=logger)
    except ProvisionError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"distribution: {result.distribution}")
    typer.echo(f"source: {result.source_path}")
    typer.echo(f"destination: {result.destination_path}")
    typer.echo(f"sha256: {result.sha256}")
    typer.echo(f"changed: {str(result.changed).lower()}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
