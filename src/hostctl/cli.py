"""Typer-powered command line for ``hostctl``.

The control panel queues changes by setting ``to*`` statuses on entity
rows; these commands apply them, one entity at a time or in bulk.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .engine import Engine, UnknownModule
from .errors import HostctlError
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .modules import ProcessResult
from .store import DataNotFound, StoreError
from .traffic import TrafficError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to hostctl's YAML config file.",
)

FIX_PERMISSIONS_OPTION = typer.Option(
    False,
    "--fix-permissions",
    help="Fix ownership and modes recursively inside web folders.",
)

JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Hosting control panel engine.

        Applies the changes queued by the control panel to Apache, BIND,
        vsftpd and Postfix, and records the outcome on each entity.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
db_app = typer.Typer(help="Manage the entity database.")

app.add_typer(config_app, name="config")
app.add_typer(db_app, name="db")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    engine: Engine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc
    logger = StructuredLogger(config.logs_dir)
    engine = Engine.from_config(config, logger=logger)
    runtime = RuntimeContext(config=config, logger=logger, engine=engine)
    ctx.obj = runtime
    ctx.call_on_close(engine.close)
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the hostctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        runtime = _ensure_runtime(ctx, config_file)
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"hostctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _status_cell(result: ProcessResult) -> str:
    if result.ok:
        return f"[green]{result.status}[/green]"
    return f"[red]{escape(result.error or '')}[/red]"


def _results_table(results: Sequence[ProcessResult]) -> Table:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Module", style="bold")
    table.add_column("ID")
    table.add_column("Action")
    table.add_column("Status")
    for result in results:
        table.add_row(result.module, str(result.entity_id), result.action, _status_cell(result))
    return table


@app.command()
def process(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="Module name (domain, subdomain, ftp_user ...)."),
    entity_id: str = typer.Argument(..., help="Primary key of the entity row."),
    fix_permissions: bool = FIX_PERMISSIONS_OPTION,
) -> None:
    """Apply the pending change of one entity and restart what changed."""
    runtime = _get_runtime(ctx)
    engine = runtime.engine
    engine.apache.fix_permissions = fix_permissions

    with runtime.logger.operation(
        "process",
        args={"fix_permissions": fix_permissions},
        target={"module": module, "id": entity_id},
    ) as op:
        try:
            result = engine.process(module, entity_id)
        except (DataNotFound, UnknownModule) as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        except StoreError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        if not result.ok:
            _command_error(op, f"{module} {entity_id}: {result.error}", rc=ExitCode.PROVIDER)

        try:
            restarted = engine.restart_services()
        except HostctlError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)

        console.print(f"[green]{module} {entity_id}[/green]: {result.action} -> {result.status}")
        for name in restarted:
            op.add_step("service.restart", detail=name)
        op.success(
            f"Processed {module} {entity_id}.",
            changed=0 if result.action == "none" else 1,
            context={"status": result.status},
        )


@app.command()
def run(
    ctx: typer.Context,
    fix_permissions: bool = FIX_PERMISSIONS_OPTION,
) -> None:
    """Process every pending entity across all modules."""
    runtime = _get_runtime(ctx)
    engine = runtime.engine
    engine.apache.fix_permissions = fix_permissions

    with runtime.logger.operation(
        "run", args={"fix_permissions": fix_permissions}, target={"kind": "pending"}
    ) as op:
        try:
            results = engine.run_pending()
        except StoreError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        try:
            restarted = engine.restart_services()
        except HostctlError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)

        if results:
            console.print(_results_table(results))
        else:
            console.print("Nothing to process.")

        failures = [result for result in results if not result.ok]
        for name in restarted:
            op.add_step("service.restart", detail=name)
        if failures:
            _command_error(
                op,
                f"{len(failures)} of {len(results)} entities failed.",
                rc=ExitCode.PROVIDER,
                errors=[f"{item.module} {item.entity_id}: {item.error}" for item in failures],
            )
        op.success(f"Processed {len(results)} entities.", changed=len(results))


@app.command()
def restore(
    ctx: typer.Context,
    module: str = typer.Argument(..., help="domain or subdomain."),
    entity_id: str = typer.Argument(..., help="Primary key of the entity row."),
) -> None:
    """Re-create missing web files of a domain or subdomain."""
    runtime = _get_runtime(ctx)

    with runtime.logger.operation("restore", target={"module": module, "id": entity_id}) as op:
        try:
            result = runtime.engine.restore(module, entity_id)
        except (DataNotFound, UnknownModule) as exc:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)
        except StoreError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        if not result.ok:
            _command_error(op, f"{module} {entity_id}: {result.error}", rc=ExitCode.PROVIDER)
        console.print(f"[green]Restored {module} {entity_id}.[/green]")
        op.success(f"Restored {module} {entity_id}.", changed=1)


@app.command()
def traffic(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Collect per-vhost HTTP traffic logged since the last collection."""
    runtime = _get_runtime(ctx)
    engine = runtime.engine

    with runtime.logger.operation("traffic", args={"json": json_output}) as op:
        try:
            totals = engine.collect_traffic()
        except TrafficError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        except StoreError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        if json_output:
            console.print_json(data=totals)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Vhost", style="bold")
            table.add_column("Bytes", justify="right")
            for vhost, value in sorted(totals.items()):
                table.add_row(vhost, str(value))
            console.print(table)

        engine.acknowledge_traffic()
        op.success(f"Collected traffic for {len(totals)} vhosts.", changed=len(totals))


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


@db_app.command("init")
def db_init(ctx: typer.Context) -> None:
    """Create the entity tables when they do not exist."""
    runtime = _get_runtime(ctx)

    with runtime.logger.operation("db init", target={"path": str(runtime.config.database)}) as op:
        try:
            runtime.engine.store.init_schema()
        except StoreError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        console.print(f"[green]Database ready at {runtime.config.database}.[/green]")
        op.success("Initialised database schema.", changed=1)


__all__ = ["RuntimeContext", "app"]
