"""
Sapphire — CLI entrypoint.

Usage:
    sapphire --help
    sapphire plan ~/.sapphire/manifests
    sapphire apply manifests/ fragments/ --dry-run
    sapphire backups list
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from sapphire import __version__
from sapphire.core.observability.logging_config import resolve_level, setup_logging

_STATUS_COLORS = {
    "ok": "green",
    "noop": "green",
    "dry-run": "cyan",
    "partial": "yellow",
    "failed": "red",
}

_OP_STYLES = {
    "applied": ("✓", "green"),
    "failed": ("✗", "red"),
    "rolled-back": ("↺", "yellow"),
    "failed-unrecoverable": ("✗✗", "red"),
    "skipped": ("⊘", "yellow"),
    "planned": ("•", "cyan"),
}


@click.group()
@click.version_option(version=__version__, prog_name="sapphire")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to config.yml (default: $SAPPHIRE_CONFIG or ~/.sapphire/config.yml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """Sapphire — declarative package and configuration management for macOS."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    if debug:
        flag_level = "DEBUG"
    elif verbose:
        flag_level = "INFO"
    elif quiet:
        flag_level = "ERROR"
    else:
        flag_level = None

    setup_logging(level=resolve_level(flag_level), quiet_third_party=not debug)


def _load_config(ctx: click.Context):
    from sapphire.core.config.loader import load_config
    from sapphire.core.errors import ConfigError

    try:
        return load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)


def _load_documents(paths: tuple[str, ...], config):
    from sapphire.core.config.store import load_all

    targets = [Path(p) for p in paths] or [d for d in config.paths.document_dirs() if d.is_dir()]
    if not targets:
        click.secho("❌ No document paths given and no configured document directories exist", fg="red")
        sys.exit(1)
    return load_all(targets)


def _echo_operation(op) -> None:
    marker, color = _OP_STYLES.get(str(op.status), ("·", "white"))
    click.secho(f"   {marker} ", fg=color, nl=False)
    click.echo(f"{op.kind} {op.target}", nl=False)
    click.secho(f"  [{op.document}]", fg="bright_black", nl=False)
    click.echo(f"  {op.note}" if op.note else "")
    if op.error:
        for line in op.error.split("\n")[:5]:
            click.echo(f"     │ {line}")
    if op.rollback_error:
        click.secho(f"     │ rollback: {op.rollback_error}", fg="red")


def _echo_errors(errors: list[dict[str, str]]) -> None:
    if not errors:
        return
    click.echo()
    click.secho(f"   Errors: {len(errors)}", fg="red", bold=True)
    for error in errors:
        where = error.get("document") or error.get("target") or ""
        click.echo(f"     ✗ {error['kind']}", nl=False)
        click.echo(f" ({where})" if where else "", nl=False)
        click.echo(f": {error['message']}")


# ── plan / apply ────────────────────────────────────────────────────


@cli.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--prune", is_flag=True, help="Plan removal of undeclared packages.")
@click.option("--override-protected", is_flag=True, help="Include changes to protected manifests.")
@click.option("--mock", is_flag=True, help="Use in-memory backends (no real host access).")
@click.pass_context
def plan(
    ctx: click.Context,
    paths: tuple[str, ...],
    as_json: bool,
    prune: bool,
    override_protected: bool,
    mock: bool,
) -> None:
    """Show the operations needed to converge the host.

    Examples:

        sapphire plan

        sapphire plan manifests/base.yml fragments/
    """
    from sapphire.adapters.host import default_host
    from sapphire.core.engine.diff import error_summary
    from sapphire.core.use_cases.reconcile import plan_documents

    config = _load_config(ctx)
    loaded = _load_documents(paths, config)
    policy = config.make_policy(prune=prune or None, override_protected=override_protected or None)
    result = plan_documents(
        loaded.documents,
        host=default_host(mock=mock),
        config=config,
        policy=policy,
        load_errors=loaded.errors,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    label = "[mock] " if mock else ""
    click.secho(f"\n📋 {label}Plan — {len(result.documents)} documents", fg="cyan", bold=True)
    if result.is_empty:
        click.secho("   Nothing to do, host is converged.", fg="green")
    for op in result.operations:
        _echo_operation(op)
    if result.dropped:
        click.secho(f"\n   Protected (not applied): {len(result.dropped)}", fg="yellow")
        for op in result.dropped:
            click.echo(f"     ⊘ {op.kind} {op.target} [{op.document}]")
    _echo_errors([error_summary(e) for e in result.errors])
    click.echo()
    if result.errors:
        sys.exit(1)


@cli.command()
@click.argument("paths", nargs=-1, type=click.Path(exists=True))
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Plan and report, but mutate nothing.")
@click.option("--no-rollback", is_flag=True, help="Keep applied changes when an operation fails.")
@click.option("--timeout", type=float, default=None, help="Seconds per extension / backend call.")
@click.option("--prune", is_flag=True, help="Remove installed packages no manifest declares.")
@click.option("--override-protected", is_flag=True, help="Allow changes to protected manifests.")
@click.option("--mock", is_flag=True, help="Use in-memory backends (no real host access).")
@click.pass_context
def apply(
    ctx: click.Context,
    paths: tuple[str, ...],
    as_json: bool,
    dry_run: bool,
    no_rollback: bool,
    timeout: float | None,
    prune: bool,
    override_protected: bool,
    mock: bool,
) -> None:
    """Converge the host to the given manifests and fragments.

    Examples:

        sapphire apply

        sapphire apply fragments/dock.yml --dry-run

        sapphire apply manifests/ --no-rollback --timeout 60
    """
    from sapphire.adapters.host import default_host
    from sapphire.core.errors import ProtectedManifestError, RunInProgressError
    from sapphire.core.use_cases.reconcile import reconcile

    config = _load_config(ctx)
    loaded = _load_documents(paths, config)
    policy = config.make_policy(
        dry_run=dry_run,
        rollback_on_error=False if no_rollback else None,
        timeout=timeout,
        prune=prune or None,
        override_protected=override_protected or None,
    )

    try:
        report = reconcile(
            loaded.documents,
            policy,
            host=default_host(mock=mock, timeout=timeout),
            config=config,
            load_errors=loaded.errors,
        )
    except (RunInProgressError, ProtectedManifestError) as e:
        if as_json:
            click.echo(json.dumps({"error": str(e), "kind": e.kind}, indent=2))
        else:
            click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
        if not report.all_ok:
            sys.exit(1)
        return

    label = "[dry-run] " if dry_run else "[mock] " if mock else ""
    click.secho(f"\n⚡ {label}Apply — run {report.run_id}", fg="cyan", bold=True)
    click.echo(f"   Documents: {len(report.documents)} | Operations: {report.total}")
    click.echo()
    for op in report.operations:
        _echo_operation(op)
    _echo_errors(report.errors)

    click.echo()
    click.secho(
        f"   Result: {report.status} — {report.applied}/{report.total} applied"
        + (f", {report.rolled_back} rolled back" if report.rolled_back else "")
        + (f", {len(report.unrecoverable)} unrecoverable" if report.unrecoverable else ""),
        fg=_STATUS_COLORS.get(report.status, "white"),
        bold=True,
    )
    click.echo()
    if not report.all_ok:
        sys.exit(1)


# ── record ──────────────────────────────────────────────────────────


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False))
@click.argument("kind", type=click.Choice(["tap", "formula", "cask"]))
@click.argument("name")
@click.option("--version", "version", default="latest", help="Version constraint to record.")
@click.option("--override-protected", is_flag=True, help="Allow writing to a protected manifest.")
@click.pass_context
def record(
    ctx: click.Context,
    manifest: str,
    kind: str,
    name: str,
    version: str,
    override_protected: bool,
) -> None:
    """Record an installed package in a manifest file."""
    from sapphire.core.config.store import record_installed
    from sapphire.core.engine.protection import check_override_allowed, protection_predicate
    from sapphire.core.errors import ProtectedManifestError, ValidationError

    config = _load_config(ctx)
    try:
        check_override_allowed(config.mode, override_protected)
        record_installed(
            Path(manifest),
            kind,
            name,
            version,
            override=override_protected,
            protected=protection_predicate(config.protected_manifests),
        )
    except (ProtectedManifestError, ValidationError) as e:
        click.secho(f"❌ {e}", fg="red")
        sys.exit(1)

    click.secho(f"✓ Recorded {kind} {name} ({version}) in {manifest}", fg="green")


# ── backups ─────────────────────────────────────────────────────────


@cli.group()
def backups() -> None:
    """Inspect and prune file backups."""


@backups.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def backups_list(ctx: click.Context, as_json: bool) -> None:
    """List backup records, oldest first."""
    from sapphire.core.persistence.backups import BackupStore

    config = _load_config(ctx)
    records = BackupStore(config.paths.backups_dir).records()

    if as_json:
        click.echo(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
        return

    if not records:
        click.echo("No backups.")
        return
    for r in records:
        click.echo(f"   {r.id}  {r.created_at}  {r.original}")


@backups.command("prune")
@click.option("--keep", type=click.IntRange(min=1), required=True, help="Records to keep per file.")
@click.pass_context
def backups_prune(ctx: click.Context, keep: int) -> None:
    """Delete all but the newest KEEP backups of each file."""
    from sapphire.core.persistence.backups import BackupStore

    config = _load_config(ctx)
    pruned = BackupStore(config.paths.backups_dir).prune(keep)
    click.secho(f"✓ Pruned {len(pruned)} backups", fg="green")


# ── status ──────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--mock", is_flag=True, help="Use in-memory backends.")
@click.pass_context
def status(ctx: click.Context, as_json: bool, mock: bool) -> None:
    """Show backend availability and the last run."""
    from sapphire.adapters.host import default_host
    from sapphire.core.persistence.state_file import default_state_path, load_state

    config = _load_config(ctx)
    state = load_state(default_state_path(config.paths.state_dir))
    backends = default_host(mock=mock).status()

    if as_json:
        click.echo(json.dumps({
            "mode": config.mode,
            "backends": backends,
            "last_run": state.last_run.model_dump(mode="json"),
        }, indent=2))
        return

    click.secho(f"\n💎 sapphire ({config.mode})", fg="cyan", bold=True)
    for concern, info in backends.items():
        marker, color = ("✓", "green") if info["available"] else ("✗", "red")
        click.secho(f"   {marker} ", fg=color, nl=False)
        click.echo(f"{concern}: {info['name']}")

    last = state.last_run
    if last.run_id:
        click.echo()
        click.secho("   Last run:", fg="white", bold=True)
        click.echo(f"     {last.run_id} — ", nl=False)
        click.secho(last.status, fg=_STATUS_COLORS.get(last.status, "white"))
        if last.ended_at:
            click.echo(f"     at {last.ended_at}")
    click.echo()


if __name__ == "__main__":
    cli()
