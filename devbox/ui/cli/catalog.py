"""
CLI commands for the step catalog.

Thin wrappers over ``devbox.core.use_cases.catalog_check``.
"""

from __future__ import annotations

import json
import sys

import click


@click.group()
def catalog() -> None:
    """Catalog — validate and list provisioning steps."""


@catalog.command("check")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def catalog_check(ctx: click.Context, as_json: bool) -> None:
    """Validate the step catalog."""
    from devbox.core.use_cases.catalog_check import check_catalog

    result = check_catalog(catalog_path=ctx.obj.get("catalog_path"))

    if as_json:
        data = result.to_dict()
        data.pop("steps")
        click.echo(json.dumps(data, indent=2))
        sys.exit(0 if result.valid else 2)

    if result.valid:
        assert result.registry is not None  # guaranteed when valid
        click.secho("✅ Catalog is valid", fg="green", bold=True)
        click.echo(f"   File:   {result.catalog_path}")
        click.echo(f"   Steps:  {len(result.registry)}")
        click.echo(f"   Phases: {', '.join(str(p) for p in result.registry.phases())}")
    else:
        click.secho("❌ Catalog errors:", fg="red", bold=True)
        for err in result.errors:
            for line in err.splitlines():
                click.echo(f"   {line}")

    if result.warnings:
        click.echo()
        click.secho("⚠️  Warnings:", fg="yellow")
        for warn in result.warnings:
            click.echo(f"   • {warn}")

    click.echo()
    if not result.valid:
        sys.exit(2)


@catalog.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def catalog_list(ctx: click.Context, as_json: bool) -> None:
    """List steps in execution order."""
    from devbox.core.use_cases.catalog_check import check_catalog

    result = check_catalog(catalog_path=ctx.obj.get("catalog_path"))

    if as_json:
        click.echo(json.dumps(result.steps(), indent=2))
        sys.exit(0 if result.valid else 2)

    if not result.valid:
        for err in result.errors:
            click.secho(f"❌ {err}", fg="red")
        sys.exit(2)

    current_phase = None
    for step in result.steps():
        if step["phase"] != current_phase:
            current_phase = step["phase"]
            click.echo()
            click.secho(f"   Phase {current_phase}", fg="cyan", bold=True)
        flags = []
        if step["needs_sudo"]:
            flags.append("sudo")
        if step["fatality"] == "abort":
            flags.append("fatal")
        if step["pinned"]:
            flags.append("pinned")
        flag_label = f" [{', '.join(flags)}]" if flags else ""
        click.echo(f"     • {step['name']} ({step['mode']}){flag_label}")
        if ctx.obj.get("verbose") and step["description"]:
            click.echo(f"       {step['description']}")
    click.echo()
