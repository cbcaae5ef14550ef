"""
Deployer — CLI entrypoint.

Usage:
    deployer --help
    deployer validate --env-file envs/staging.yml
    deployer create --env-file envs/staging.yml
    deployer status staging
    deployer list
    deployer destroy staging
"""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click

from deployer import __version__
from deployer.core.errors import DeployerError, StepFailed
from deployer.core.observability.logging_config import resolve_level, setup_logging

_STATE_COLORS = {
    "running": "green",
    "destroyed": "green",
    "failed": "red",
    "created": "white",
}


@click.group()
@click.version_option(version=__version__, prog_name="deployer")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Only print errors.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--settings",
    "-s",
    "settings_path",
    type=click.Path(exists=False),
    default=None,
    help="Path to deployer.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    settings_path: str | None,
) -> None:
    """Deployer — provision, configure and destroy environments."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["settings_path"] = Path(settings_path) if settings_path else None

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        flag_level = "DEBUG"
    elif verbose:
        flag_level = "INFO"
    elif quiet:
        flag_level = "ERROR"
    else:
        flag_level = None

    setup_logging(level=resolve_level(flag_level))


# ── Helpers ─────────────────────────────────────────────────────


def _open_lifecycle(ctx: click.Context):
    from deployer.core.config.settings import load_settings
    from deployer.core.engine.lifecycle import Lifecycle

    settings = load_settings(ctx.obj.get("settings_path"))
    return Lifecycle.open(settings, toolchain=ctx.obj.get("toolchain"))


def _fail(error: DeployerError, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps({"ok": False, "error": error.to_dict()}, indent=2))
    else:
        click.secho(f"❌ [{error.kind}] {error}", fg="red", err=True)
        if isinstance(error, StepFailed):
            click.echo(f"   Run 'deployer status {error.name}' for details.", err=True)
    sys.exit(1)


def _print_environment(env, quiet: bool = False) -> None:
    color = _STATE_COLORS.get(env.state.value, "yellow")
    click.secho(f"\n📋 {env.name}  ", fg="cyan", bold=True, nl=False)
    click.secho(env.state.value, fg=color, bold=True)
    if quiet:
        return

    click.echo(f"   Provider:  {env.provider or '-'}")
    instance = env.instance_name or "-"
    if env.instance_ip:
        instance += f" ({env.instance_ip})"
    click.echo(f"   Instance:  {instance}")
    click.echo(f"   Created:   {env.created_at}")
    click.echo(f"   Changed:   {env.transitioned_at}")

    if env.last_error is not None:
        err = env.last_error
        click.echo()
        click.secho(f"   Failed at {err.at} (was {err.previous_state.value})", fg="red")
        click.echo(f"     [{err.kind}] {err.message}")
        excerpt = err.cause.get("stderr_excerpt")
        if excerpt:
            for line in excerpt.splitlines():
                click.echo(f"     | {line}")
    click.echo()


def _outcomes_payload(outcomes) -> dict[str, Any]:
    return {
        "ok": all(o.ok for o in outcomes),
        "results": [o.to_dict() for o in outcomes],
    }


# ── Commands ────────────────────────────────────────────────────


@cli.command()
@click.option(
    "--env-file",
    "env_files",
    type=click.Path(exists=False, dir_okay=False),
    multiple=True,
    required=True,
    help="Environment YAML file. Repeat to create several environments in parallel.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def create(ctx: click.Context, env_files: tuple[str, ...], as_json: bool) -> None:
    """Provision, configure and verify new environments."""
    from deployer.core.config.creation import load_creation_config

    try:
        configs = [load_creation_config(Path(p)) for p in env_files]
        with _open_lifecycle(ctx) as lifecycle:
            if len(configs) == 1:
                env = lifecycle.create(configs[0])
                outcomes = None
            else:
                outcomes = lifecycle.create_many(configs)
    except DeployerError as e:
        _fail(e, as_json)
        return

    if outcomes is None:
        if as_json:
            click.echo(json.dumps({"ok": True, "environment": env.model_dump(mode="json")}, indent=2))
        else:
            click.secho(f"✅ Environment '{env.name}' is running at {env.instance_ip}", fg="green")
        return

    _report_many(outcomes, "created", as_json)


@cli.command()
@click.option(
    "--env-file",
    type=click.Path(exists=False, dir_okay=False),
    required=True,
    help="Environment YAML file to check.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
def validate(env_file: str, as_json: bool) -> None:
    """Check an environment file without touching any tool or state."""
    from deployer.core.config.creation import load_creation_config

    try:
        config = load_creation_config(Path(env_file))
    except DeployerError as e:
        _fail(e, as_json)
        return

    summary = config.summary()
    if as_json:
        click.echo(json.dumps({"ok": True, "config": summary}, indent=2))
        return

    click.secho(f"✅ {env_file} is valid", fg="green")
    click.echo(f"   Environment: {summary['name']}")
    click.echo(f"   Instance:    {summary['instance_name']}")
    click.echo(f"   Provider:    {summary['provider']}")
    click.echo(f"   SSH:         {summary['ssh_user']} (port {summary['ssh_port']})")
    optional = [
        label
        for key, label in (
            ("has_domain", "domain"),
            ("has_admin_email", "admin email"),
            ("has_admin_password", "admin password"),
            ("has_health_check", "health check"),
        )
        if summary[key]
    ]
    click.echo(f"   Optional:    {', '.join(optional) or 'none'}")


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def destroy(ctx: click.Context, names: tuple[str, ...], as_json: bool) -> None:
    """Tear down environments and remove their records."""
    try:
        with _open_lifecycle(ctx) as lifecycle:
            if len(names) == 1:
                env = lifecycle.destroy(names[0])
                outcomes = None
            else:
                outcomes = lifecycle.destroy_many(names)
    except DeployerError as e:
        _fail(e, as_json)
        return

    if outcomes is None:
        if as_json:
            click.echo(json.dumps({
                "ok": True,
                "name": names[0],
                "destroyed": env is not None,
            }, indent=2))
        elif env is None:
            click.echo(f"Environment '{names[0]}' does not exist, nothing to destroy.")
        else:
            click.secho(f"✅ Environment '{env.name}' destroyed", fg="green")
        return

    _report_many(outcomes, "destroyed", as_json)


def _report_many(outcomes, verb: str, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps(_outcomes_payload(outcomes), indent=2))
    else:
        for outcome in outcomes:
            if outcome.ok:
                click.secho(f"✅ {outcome.name}: {verb}", fg="green")
            else:
                click.secho(f"❌ {outcome.name}: [{outcome.error.kind}] {outcome.error}", fg="red")
    if not all(o.ok for o in outcomes):
        sys.exit(1)


@cli.command()
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def status(ctx: click.Context, name: str, as_json: bool) -> None:
    """Show the state of one environment."""
    try:
        with _open_lifecycle(ctx) as lifecycle:
            env = lifecycle.status(name)
    except DeployerError as e:
        _fail(e, as_json)
        return

    if as_json:
        click.echo(json.dumps(env.model_dump(mode="json"), indent=2))
        return
    _print_environment(env, quiet=ctx.obj.get("quiet", False))


@cli.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(ctx: click.Context, as_json: bool) -> None:
    """List all known environments."""
    try:
        with _open_lifecycle(ctx) as lifecycle:
            environments = lifecycle.list_environments()
    except DeployerError as e:
        _fail(e, as_json)
        return

    if as_json:
        click.echo(json.dumps([env.summary() for env in environments], indent=2))
        return

    if not environments:
        click.echo("No environments.")
        return

    for env in environments:
        color = _STATE_COLORS.get(env.state.value, "yellow")
        click.echo(f"  • {env.name:<24} ", nl=False)
        click.secho(f"{env.state.value:<12}", fg=color, nl=False)
        click.echo(f" {env.provider:<8} {env.instance_ip or '-'}")


@cli.command()
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def tools(ctx: click.Context, as_json: bool) -> None:
    """Check that the external tools can be found."""
    from deployer.adapters.registry import Toolchain
    from deployer.core.config.settings import load_settings

    try:
        settings = load_settings(ctx.obj.get("settings_path"))
    except DeployerError as e:
        _fail(e, as_json)
        return

    toolchain = ctx.obj.get("toolchain") or Toolchain.from_settings(settings)
    report = toolchain.availability()

    if as_json:
        click.echo(json.dumps(report, indent=2))
    else:
        for role, info in report.items():
            mark = "✓" if info["available"] else "✗"
            color = "green" if info["available"] else "red"
            click.secho(f"  {mark} ", fg=color, nl=False)
            click.echo(f"{role:<22} {info['binary'] or '-'}")

    if not all(info["available"] for info in report.values()):
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
