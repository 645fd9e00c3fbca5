"""
devbox — CLI entrypoint.

Usage:
    devbox --help
    devbox run
    devbox run --dry-run
    devbox status
    devbox catalog check

Exit codes:
    0  every step is satisfied
    1  one or more continue-policy steps failed
    2  a fatal step failed, the catalog is invalid, or the run was cancelled
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click

from devbox import __version__
from devbox.core.observability.logging_config import resolve_level, setup_logging

_OUTCOME_STYLE = {
    "succeeded": ("✓", "green"),
    "skipped": ("⊘", "white"),
    "failed": ("✗", "red"),
    "pending": ("…", "yellow"),
}

_STATUS_COLOR = {
    "ok": "green",
    "partial": "yellow",
    "failed": "red",
    "aborted": "red",
    "cancelled": "yellow",
}


@click.group()
@click.version_option(version=__version__, prog_name="devbox")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--catalog",
    "catalog_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Step catalog (default: $DEVBOX_CATALOG or the bundled catalog).",
)
@click.option(
    "--ledger",
    "ledger_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Ledger file (default: $DEVBOX_LEDGER or ~/.devbox/ledger.json).",
)
@click.option("--user", "target_user", default=None, help="User to provision for.")
@click.option("--workspace", default=None, help="Projects directory (default: /data/projects).")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    catalog_path: str | None,
    ledger_path: str | None,
    target_user: str | None,
    workspace: str | None,
) -> None:
    """devbox — idempotent development machine provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["catalog_path"] = Path(catalog_path).expanduser() if catalog_path else None
    ctx.obj["ledger_path"] = Path(ledger_path).expanduser() if ledger_path else None
    ctx.obj["target_user"] = target_user
    ctx.obj["workspace"] = workspace

    # ── Logging setup (once, at process start) ──────────────────
    setup_logging(
        level=resolve_level(debug=debug, verbose=verbose, quiet=quiet),
        log_file=os.environ.get("DEVBOX_LOG_FILE"),
        log_file_level=os.environ.get("DEVBOX_LOG_FILE_LEVEL"),
    )


def _session(ctx: click.Context):
    """Build the session context once per invocation."""
    from devbox.core.context import SessionContext

    if "session" not in ctx.obj:
        ctx.obj["session"] = SessionContext.from_environment(
            target_user=ctx.obj.get("target_user"),
            workspace=ctx.obj.get("workspace"),
        )
    return ctx.obj["session"]


# ── Run ─────────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--dry-run", is_flag=True, help="Check presence only; install nothing.")
@click.option("--only", "only", multiple=True, help="Run only this step (repeatable).")
@click.option("--phase", "phases", type=int, multiple=True, help="Run only this phase (repeatable).")
@click.pass_context
def run(
    ctx: click.Context,
    as_json: bool,
    dry_run: bool,
    only: tuple[str, ...],
    phases: tuple[int, ...],
) -> None:
    """Provision every step whose effect is missing.

    Examples:

        devbox run

        devbox run --dry-run

        devbox run --only ripgrep --only lazygit

        devbox run --phase 1 --phase 2
    """
    from devbox.core.use_cases.provision import provision

    quiet = ctx.obj.get("quiet", False)

    def _progress(result) -> None:
        marker, color = _OUTCOME_STYLE.get(result.outcome, ("?", "white"))
        click.secho(f"   {marker} ", fg=color, nl=False)
        click.echo(f"[{result.phase}] {result.step}", nl=False)
        timing = (
            f" ({result.record.duration_ms}ms)"
            if result.record and result.record.duration_ms and result.outcome != "skipped"
            else ""
        )
        detail = f"  {result.detail}" if result.outcome in ("failed", "pending") else ""
        click.echo(f"{timing}{detail}")
        if result.outcome == "failed" and result.record is not None:
            click.secho(f"     │ {result.record.error_kind}", fg="red")
            click.echo(f"     │ hint: {result.record.hint}")

    if not as_json and not quiet:
        label = "[dry-run] " if dry_run else ""
        click.secho(f"\n⚙️  {label}devbox provision", fg="cyan", bold=True)
        click.echo()

    result = provision(
        catalog_path=ctx.obj.get("catalog_path"),
        ledger_path=ctx.obj.get("ledger_path"),
        ctx=_session(ctx),
        dry_run=dry_run,
        only=list(only) or None,
        phases=list(phases) or None,
        on_result=None if as_json or quiet else _progress,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        if result.hint:
            click.echo(f"   hint: {result.hint}", err=True)
        sys.exit(result.exit_code)

    report = result.report
    assert report is not None

    # Summary
    click.echo()
    click.secho(
        f"   Result: {report.status} — {report.succeeded} installed, "
        f"{report.skipped} already present, {report.failed} failed, "
        f"{report.pending} pending",
        fg=_STATUS_COLOR.get(report.status, "white"),
        bold=True,
    )
    if report.cancelled:
        click.secho(f"   Cancelled: {report.cancel_reason}", fg="yellow")
    if report.aborted_by:
        click.secho(f"   Aborted by fatal step: {report.aborted_by}", fg="red")

    unsatisfied = report.unsatisfied
    if unsatisfied and not dry_run:
        click.echo()
        click.secho("   Not satisfied:", fg="yellow", bold=True)
        for step_result in unsatisfied:
            kind = step_result.record.error_kind if step_result.record else step_result.outcome
            click.echo(f"     • {step_result.step} ({kind})")
        click.echo("   Re-run 'devbox run' after fixing the cause; satisfied steps are skipped.")

    if result.privileged_calls and ctx.obj.get("verbose"):
        click.echo()
        click.secho("   Privileged commands:", fg="white", bold=True)
        for call in result.privileged_calls:
            click.echo(f"     $ sudo {' '.join(call)}")

    click.echo()
    sys.exit(result.exit_code)


# ── Status ──────────────────────────────────────────────────────


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show each step's live presence next to its last recorded outcome."""
    from devbox.core.use_cases.status import get_status

    result = get_status(
        catalog_path=ctx.obj.get("catalog_path"),
        ledger_path=ctx.obj.get("ledger_path"),
        ctx=_session(ctx),
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(2 if result.error else 0)

    if result.error:
        click.secho(f"❌ {result.error}", fg="red", err=True)
        sys.exit(2)

    ledger = result.ledger
    click.secho(f"\n📋 devbox status — {len(result.steps)} steps", fg="cyan", bold=True)
    click.echo(f"   Ledger: {result.ledger_path}")
    if ledger and ledger.last_run_id:
        click.echo(f"   Last run: {ledger.last_run_id} (exit {ledger.last_exit_code})")
    click.echo()

    for step in result.steps:
        if step.present:
            click.secho("   ✓ ", fg="green", nl=False)
        else:
            click.secho("   ✗ ", fg="red", nl=False)
        recorded = f"  last: {step.recorded}" if step.recorded else "  never run"
        version = f" v{step.version}" if step.version else ""
        click.echo(f"[{step.phase}] {step.name}{version}{recorded}", nl=False)
        if step.drifted:
            click.secho("  (drifted)", fg="yellow", nl=False)
        click.echo()

    click.echo()
    click.secho(
        f"   {result.present_count}/{len(result.steps)} present",
        fg="green" if not result.missing else "yellow",
        bold=True,
    )
    click.echo()


# ── Sub-groups ──────────────────────────────────────────────────

from devbox.ui.cli.catalog import catalog

cli.add_command(catalog)


if __name__ == "__main__":
    cli()
