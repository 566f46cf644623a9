"""
comfy-provision — CLI entrypoint.

Usage:
    comfy-provision --help
    comfy-provision run
    comfy-provision status
    comfy-provision compare 2.7.0+cu128 2.7
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from comfy_provision import __version__
from comfy_provision.core.observability.logging_config import resolve_level, setup_logging

_OUTCOME_STYLE = {
    "already-satisfied": ("✓", "green"),
    "installed": ("✓", "green"),
    "repaired": ("✓", "cyan"),
    "degraded": ("⚠", "yellow"),
    "failed": ("✗", "red"),
}


def _load_config(ctx: click.Context):
    """Load config for a command, exiting with a message on ConfigError."""
    from comfy_provision.core.config.loader import ConfigError, load_config

    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="comfy-provision")
@click.option("--verbose", "-v", is_flag=True, help="Debug output from comfy-provision only.")
@click.option("--quiet", "-q", is_flag=True, help="Only log errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to provision.yml (default: $PROVISION_CONFIG or auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Provision a ComfyUI GPU server: runtime stack, frontend and plugins."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        quiet_third_party=not debug,
    )


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--no-restart", is_flag=True, help="Leave the service stopped afterwards.")
@click.pass_context
def run(ctx: click.Context, as_json: bool, no_restart: bool) -> None:
    """Run a full provisioning pass.

    Exits 1 only when the venv is missing or pip cannot be repaired.
    Any other failure is recorded in the marker and the service is
    started again.
    """
    from comfy_provision.core.use_cases.provision import provision

    config = _load_config(ctx)
    if no_restart:
        config.service.restart = False

    result = provision(config)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.fatal:
        click.secho(f"\n❌ Provisioning aborted: {result.error}", fg="red", bold=True)
        sys.exit(result.exit_code)

    click.secho("\n⚡ Provisioning complete", fg="cyan", bold=True)
    for name, entry in result.report.entries.items():
        icon, color = _OUTCOME_STYLE.get(entry.outcome.value, ("•", "white"))
        version = f" {entry.version}" if entry.version else ""
        click.secho(f"   {icon} {name}", fg=color, nl=False)
        click.echo(f"{version}  [{entry.outcome.value}]")
        if entry.message and (ctx.obj.get("verbose") or not entry.outcome.ok):
            click.echo(f"     │ {entry.message}")

    if result.drift_corrected:
        click.secho("   ↺ framework drift corrected", fg="yellow")
    if result.pip_conflicts:
        click.secho(f"   ⚠️  pip check: {len(result.pip_conflicts)} problems", fg="yellow")

    click.echo()
    summary = result.report.summary()
    color = "green" if result.ok else "yellow"
    click.secho(
        f"   {len(result.report.succeeded)}/{len(result.report.entries)} ok, "
        f"{summary['degraded']} degraded, {summary['failed']} failed",
        fg=color,
        bold=True,
    )
    if result.marker_path:
        click.echo(f"   Marker: {result.marker_path}")
    if not result.service_restarted:
        click.secho("   Service was not restarted", fg="yellow")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show what the last provisioning run recorded."""
    from comfy_provision.core.use_cases.status import get_status

    result = get_status(_load_config(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.provisioned else 1)

    if result.error or result.marker is None:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    marker = result.marker
    click.secho(f"\n📋 Provisioned {marker.provisioned_at}", fg="cyan", bold=True)
    click.echo(f"   comfy-provision {marker.script_version}")
    click.echo(f"   PyTorch:  {marker.torch_version or '—'} (CUDA {marker.cuda_version or '—'})")
    if marker.cuda_available is not None:
        cuda_color = "green" if marker.cuda_available else "yellow"
        click.secho(f"   CUDA available: {marker.cuda_available}", fg=cuda_color)
    click.echo(f"   Triton:   {marker.triton_version or '—'}")
    click.echo(f"   Frontend: {marker.frontend_version or '—'}")
    click.echo(f"   pip:      {marker.pip_version if marker.pip_accessible else 'inaccessible'}")

    verified_color = "green" if marker.all_verified else "red"
    click.secho(f"   All verified: {marker.all_verified}", fg=verified_color)
    failed = ", ".join(marker.failed_plugins) if marker.failed_plugins else "None"
    click.secho(f"   Failed nodes: {failed}", fg="red" if marker.failed_plugins else "green")
    if marker.degraded_plugins:
        click.secho(f"   Degraded nodes: {', '.join(marker.degraded_plugins)}", fg="yellow")
    click.echo()


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def check(ctx: click.Context, as_json: bool) -> None:
    """Probe every dependency without installing anything.

    Exits 1 when a provisioning run would change something.
    """
    from comfy_provision.core.use_cases.check import check_dependencies

    result = check_dependencies(_load_config(ctx))

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.converged else 1)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red")
        sys.exit(1)

    click.echo()
    for dep in result.dependencies:
        ok = dep.verdict.value == "satisfied"
        click.secho(f"   {'✓' if ok else '✗'} {dep.name} ", fg="green" if ok else "red", nl=False)
        wanted = dep.required or "any"
        click.echo(f"{dep.detected or 'not installed'} (want {wanted}) [{dep.verdict.value}]")
    click.echo()

    if not result.converged:
        sys.exit(1)


@cli.command()
@click.argument("detected")
@click.argument("required")
@click.option(
    "--policy",
    type=click.Choice(["pin", "minimum"]),
    default="pin",
    show_default=True,
    help="pin: prefix must match; minimum: prefix match or newer.",
)
def compare(detected: str, required: str, policy: str) -> None:
    """Compare two version strings the way the installer does.

    Pass "none" as DETECTED for a package that is not installed.
    Exits 0 when satisfied, 1 otherwise.
    """
    from comfy_provision.core.services.version_compare import VersionCheck, compare_versions

    found = None if detected.lower() in ("none", "-", "") else detected
    try:
        verdict = compare_versions(found, required, policy)
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="REQUIRED") from e

    click.echo(verdict.value)
    sys.exit(0 if verdict == VersionCheck.SATISFIED else 1)


@cli.command("clean-plugins")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def clean_plugins(ctx: click.Context, as_json: bool) -> None:
    """Remove hidden and __pycache__ directories from custom_nodes."""
    from comfy_provision.core.use_cases.provision import Provisioner

    provisioner = Provisioner(_load_config(ctx))
    removed = provisioner.plugins.clean_plugin_root()

    if as_json:
        click.echo(json.dumps({
            "root": str(provisioner.plugins.root),
            "removed": [str(p) for p in removed],
        }, indent=2))
        return

    if not removed:
        click.secho(f"✓ Nothing to clean in {provisioner.plugins.root}", fg="green")
        return
    click.secho(f"🧹 Removed {len(removed)} directories:", fg="cyan")
    for path in removed:
        click.echo(f"   • {path}")


if __name__ == "__main__":
    cli()
