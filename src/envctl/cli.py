"""Typer-powered command line for ``envctl``.

Every command that acts on an environment reads its attributes from a YAML
file (``--environ-file``). Attributes generated while preparing an
environment (admin secret, CA) are recorded under
``<home_dir>/environments/<name>.yaml`` and take precedence afterwards, so
later commands see the same credentials the bootstrap used.
"""
from __future__ import annotations

import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import typer
import yaml
from rich.console import Console
from rich.table import Table

from . import __version__
from .agent import AgentConfigError, read_conf, read_format, write_new_password
from .agent.format import write_file_atomic
from .config import AppConfig, ConfigError, load_config
from .constraints import Constraints, ConstraintsError
from .environs import EnvironConfig, EnvironConfigError, ProviderError, registry
from .environs.bootstrap import bootstrap as bootstrap_environ
from .environs.bootstrap import upload_tools
from .exit_codes import ExitCode
from .instance import Instance, NoInstancesError, PartialInstancesError
from .logging import OperationScope, StructuredLogger
from .providers.common.bootstrap import BootstrapError
from .providers.common.state import StateFileError, load_state
from .providers.manual import ManualError
from .storage import NotFoundError, StorageError, VerificationError, verify_storage
from .templates import TemplateEngine, TemplateRenderError
from .tools import ToolsArchiveError
from .version import CURRENT_NUMBER

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Path to an alternate envctl configuration file.",
)
ENVIRON_FILE_OPTION = typer.Option(
    ...,
    "--environ-file",
    "-f",
    dir_okay=False,
    help="YAML file describing the environment (or an environments.yaml).",
)
ENVIRONMENT_OPTION = typer.Option(
    None,
    "--environment",
    "-e",
    help="Environment to select from an environments.yaml file.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")
DATA_DIR_OPTION = typer.Option(
    None,
    "--data-dir",
    file_okay=False,
    help="Agent data directory (defaults to the configured data_dir).",
)

_PROVIDER_ERRORS = (ProviderError, StorageError, ManualError, StateFileError, ToolsArchiveError)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Environment provisioning CLI.

        Prepare, bootstrap, inspect and destroy environments across the
        supported backends, and manage the agent configuration of machines.
        """
    ).strip(),
)
tools_app = typer.Typer(help="Package and upload agent tools.")
agent_app = typer.Typer(help="Inspect and maintain machine agent configuration.")
app.add_typer(tools_app, name="tools")
app.add_typer(agent_app, name="agent")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    templates: TemplateEngine


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.home_dir / "templates")
    runtime = RuntimeContext(config=config, logger=logger, templates=templates)
    ctx.obj = runtime
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
        help="Show the envctl version and exit.",
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
            console.print(f"envctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# Error helpers -----------------------------------------------------------
def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = ExitCode.VALIDATION,
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _environment_error(op: OperationScope, message: str) -> NoReturn:
    _command_error(op, message, rc=ExitCode.ENVIRONMENT)


def _provider_error(op: OperationScope, message: str) -> NoReturn:
    _command_error(op, message, rc=ExitCode.PROVIDER)


# Environment loading -----------------------------------------------------
def _recorded_path(config: AppConfig, name: str) -> Path:
    return config.home_dir / "environments" / f"{name}.yaml"


def _environ_config(
    runtime: RuntimeContext,
    op: OperationScope,
    environ_file: Path,
    name: str | None,
) -> EnvironConfig:
    """Return the configuration for the selected environment.

    Attributes recorded when the environment was prepared win over the file.
    """
    try:
        attrs = registry.read_environ_attrs(environ_file, name)
        recorded = _recorded_path(runtime.config, str(attrs.get("name") or ""))
        if attrs.get("name") and recorded.is_file():
            op.add_step("environ.recorded", detail=str(recorded))
            attrs = registry.read_environ_attrs(recorded)
        return EnvironConfig(attrs)
    except EnvironConfigError as exc:
        _command_error(op, str(exc))


def _record_config(runtime: RuntimeContext, config: EnvironConfig) -> Path:
    path = _recorded_path(runtime.config, config.name)
    text = yaml.safe_dump(config.all_attrs(), sort_keys=True, default_flow_style=False)
    write_file_atomic(path, text, 0o600)
    return path


def _open_environ(op: OperationScope, config: EnvironConfig) -> Any:
    try:
        environ = registry.open(config)
    except EnvironConfigError as exc:
        _command_error(op, str(exc))
    except _PROVIDER_ERRORS as exc:
        _provider_error(op, str(exc))
    op.add_step("environ.open", detail=config.name)
    return environ


# Commands ----------------------------------------------------------------
@app.command()
def version(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the CLI version and the agent tools version it deploys."""
    runtime = _get_runtime(ctx)
    tools = runtime.config.tools
    payload = {
        "version": __version__,
        "tools": str(CURRENT_NUMBER),
        "series": tools.series,
        "arch": tools.arch,
    }
    with runtime.logger.operation(
        "version",
        args={"json": json_output},
        target={"kind": "meta", "scope": "version"},
    ) as op:
        if json_output:
            console.print_json(data=payload)
        else:
            console.print(f"envctl {__version__}")
            console.print(f"agent tools {CURRENT_NUMBER}-{tools.series}-{tools.arch}")
        op.success("Reported versions.", changed=0, context=payload)


@app.command()
def boilerplate(
    ctx: typer.Context,
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write the sample environments file here instead of stdout.",
    ),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing output file."),
) -> None:
    """Print a sample environments file covering every backend."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "boilerplate",
        args={"output": str(output) if output else None, "force": force},
        target={"kind": "environments-file"},
    ) as op:
        try:
            text = registry.boilerplate_config(runtime.templates)
        except TemplateRenderError as exc:
            _environment_error(op, str(exc))

        if output is None:
            console.print(text, end="", markup=False, highlight=False, soft_wrap=True)
            op.success("Rendered sample environments file.", changed=0)
            return

        if output.exists() and not force:
            _command_error(op, f"{output} already exists; use --force to overwrite it")
        try:
            write_file_atomic(output, text, 0o644)
        except OSError as exc:
            _environment_error(op, f"cannot write {output}: {exc}")
        console.print(f"Sample environments file written to {output}.")
        op.success("Wrote sample environments file.", changed=1, context={"path": str(output)})


@app.command()
def bootstrap(
    ctx: typer.Context,
    environ_file: Path = ENVIRON_FILE_OPTION,
    environment: str | None = ENVIRONMENT_OPTION,
    constraints: list[str] | None = typer.Option(
        None,
        "--constraints",
        "-c",
        help="Machine constraints such as 'mem=4G arch=amd64' (repeatable).",
    ),
    upload_dir: Path | None = typer.Option(
        None,
        "--upload-tools",
        file_okay=False,
        exists=True,
        help="Upload the executables in this directory as tools before bootstrapping.",
    ),
    data_dir: Path | None = DATA_DIR_OPTION,
) -> None:
    """Prepare an environment and start its first state server."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "bootstrap",
        args={
            "environ_file": str(environ_file),
            "constraints": list(constraints or []),
            "upload_tools": str(upload_dir) if upload_dir else None,
        },
        target={"kind": "environment", "name": environment},
    ) as op:
        try:
            cons = Constraints.parse(*(constraints or []))
        except ConstraintsError as exc:
            _command_error(op, f"invalid constraints: {exc}")

        config = _environ_config(runtime, op, environ_file, environment)
        try:
            environ = registry.prepare(config)
        except EnvironConfigError as exc:
            _command_error(op, str(exc))
        except _PROVIDER_ERRORS as exc:
            _provider_error(op, str(exc))
        op.add_step("environ.prepare", detail=config.name)

        try:
            recorded = _record_config(runtime, environ.config())
        except OSError as exc:
            _environment_error(op, f"cannot record environment configuration: {exc}")
        op.add_step("environ.record", detail=str(recorded))

        cfg = environ.config()
        if upload_dir is not None:
            try:
                uploaded = upload_tools(
                    environ.storage(),
                    upload_dir,
                    series=cfg.default_series,
                    arch=cons.arch or runtime.config.tools.arch,
                )
            except _PROVIDER_ERRORS as exc:
                _provider_error(op, f"cannot upload tools: {exc}")
            op.add_step("tools.upload", detail=", ".join(str(item.binary) for item in uploaded))

        try:
            possible = bootstrap_environ(
                environ,
                cons,
                data_dir=data_dir or runtime.config.data_dir,
                op=op,
            )
        except BootstrapError as exc:
            _environment_error(op, str(exc))
        except EnvironConfigError as exc:
            _command_error(op, str(exc))
        except _PROVIDER_ERRORS as exc:
            _provider_error(op, str(exc))

        console.print(f'[green]Environment "{cfg.name}" bootstrapped ({cfg.type}).[/green]')
        op.success(
            f"Bootstrapped environment {cfg.name}.",
            changed=1,
            context={"tools": [str(item.binary) for item in possible]},
        )


def _state_instances(environ: Any, ids: Sequence[str]) -> list[Instance | None]:
    if not ids:
        return []
    try:
        return list(environ.instances(ids))
    except PartialInstancesError as exc:
        return exc.instances
    except NoInstancesError:
        return [None] * len(ids)


@app.command()
def status(
    ctx: typer.Context,
    environ_file: Path = ENVIRON_FILE_OPTION,
    environment: str | None = ENVIRONMENT_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the state servers of a bootstrapped environment."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "status",
        args={"environ_file": str(environ_file), "json": json_output},
        target={"kind": "environment", "name": environment},
    ) as op:
        config = _environ_config(runtime, op, environ_file, environment)
        environ = _open_environ(op, config)
        try:
            state = load_state(environ.storage(), policy=runtime.config.storage.retry_policy())
        except NotFoundError:
            _environment_error(op, f'environment "{config.name}" is not bootstrapped')
        except _PROVIDER_ERRORS as exc:
            _provider_error(op, str(exc))

        found = _state_instances(environ, state.state_instances)
        rows = []
        for instance_id, inst in zip(state.state_instances, found, strict=True):
            rows.append(
                {
                    "id": instance_id,
                    "status": inst.status() if inst is not None else "missing",
                    "dns_name": inst.dns_name() if inst is not None else "",
                }
            )

        warnings: list[str] = []
        state_addrs: list[str] = []
        api_addrs: list[str] = []
        try:
            state_info, api_info = environ.state_info()
            state_addrs, api_addrs = list(state_info.addrs), list(api_info.addrs)
        except (StateFileError, StorageError) as exc:
            warnings.append(str(exc))

        payload = {
            "environment": config.name,
            "type": config.type,
            "instances": rows,
            "hardware": [str(hw) for hw in state.characteristics],
            "state_addresses": state_addrs,
            "api_addresses": api_addrs,
        }
        if json_output:
            console.print_json(data=payload)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Instance", style="bold")
            table.add_column("Status")
            table.add_column("DNS name")
            if not rows:
                table.add_row("(none)", "", "")
            for row in rows:
                table.add_row(row["id"], row["status"] or "-", row["dns_name"] or "-")
            console.print(table)
            if state_addrs:
                console.print(f"state: {', '.join(state_addrs)}")
                console.print(f"api: {', '.join(api_addrs)}")
            for warning in warnings:
                console.print(f"[yellow]{warning}[/yellow]")

        if warnings:
            op.warning("Reported environment status with warnings.", warnings=warnings, changed=0)
        else:
            op.success("Reported environment status.", changed=0)


@app.command()
def destroy(
    ctx: typer.Context,
    environ_file: Path = ENVIRON_FILE_OPTION,
    environment: str | None = ENVIRONMENT_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
) -> None:
    """Stop every instance and remove the environment storage."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "destroy",
        args={"environ_file": str(environ_file), "yes": yes},
        target={"kind": "environment", "name": environment},
    ) as op:
        config = _environ_config(runtime, op, environ_file, environment)
        if not yes:
            typer.confirm(f'Destroy environment "{config.name}"?', abort=True)
        environ = _open_environ(op, config)
        try:
            environ.destroy()
        except _PROVIDER_ERRORS as exc:
            _provider_error(op, str(exc))
        op.add_step("environ.destroy", detail=config.name)

        _recorded_path(runtime.config, config.name).unlink(missing_ok=True)
        console.print(f'Environment "{config.name}" destroyed.')
        op.success(f"Destroyed environment {config.name}.", changed=1)


@app.command("verify-storage")
def verify_storage_command(
    ctx: typer.Context,
    environ_file: Path = ENVIRON_FILE_OPTION,
    environment: str | None = ENVIRONMENT_OPTION,
) -> None:
    """Check that the environment storage keeps what is written to it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "verify-storage",
        args={"environ_file": str(environ_file)},
        target={"kind": "storage", "name": environment},
    ) as op:
        config = _environ_config(runtime, op, environ_file, environment)
        environ = _open_environ(op, config)
        try:
            verify_storage(environ.storage())
        except VerificationError as exc:
            _environment_error(op, str(exc))
        except StorageError as exc:
            _provider_error(op, str(exc))
        console.print(f'Storage of "{config.name}" verified.')
        op.success("Verified environment storage.", changed=1)


@tools_app.command("upload")
def tools_upload(
    ctx: typer.Context,
    directory: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=False,
        help="Directory holding the agent executables.",
    ),
    environ_file: Path = ENVIRON_FILE_OPTION,
    environment: str | None = ENVIRONMENT_OPTION,
    series: list[str] | None = typer.Option(
        None,
        "--series",
        help="Also upload for this series (repeatable).",
    ),
    arch: str | None = typer.Option(None, "--arch", help="Tools architecture."),
) -> None:
    """Archive the executables in DIRECTORY and upload them as tools."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "tools upload",
        args={"directory": str(directory), "series": list(series or []), "arch": arch},
        target={"kind": "tools", "name": environment},
    ) as op:
        config = _environ_config(runtime, op, environ_file, environment)
        environ = _open_environ(op, config)
        try:
            uploaded = upload_tools(
                environ.storage(),
                directory,
                series=config.default_series,
                arch=arch or runtime.config.tools.arch,
                extra_series=series or (),
            )
        except _PROVIDER_ERRORS as exc:
            _provider_error(op, f"cannot upload tools: {exc}")

        for item in uploaded:
            console.print(f"{item.binary}  {item.size} bytes  sha256:{item.sha256}")
        op.success(
            f"Uploaded {len(uploaded)} tools archive(s).",
            changed=len(uploaded),
            context={"tools": [str(item.binary) for item in uploaded]},
        )


@agent_app.command("show")
def agent_show(
    ctx: typer.Context,
    tag: str = typer.Argument(..., help="Agent entity tag, e.g. machine-0."),
    data_dir: Path | None = DATA_DIR_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show an agent's configuration without its secrets."""
    runtime = _get_runtime(ctx)
    root = data_dir or runtime.config.data_dir
    with runtime.logger.operation(
        "agent show",
        args={"data_dir": str(root), "json": json_output},
        target={"kind": "agent", "tag": tag},
    ) as op:
        try:
            conf = read_conf(root, tag)
            fmt = read_format(conf.dir)
        except AgentConfigError as exc:
            _environment_error(op, str(exc))

        payload = {
            "tag": conf.tag,
            "dir": str(conf.dir),
            "format": fmt.value,
            "state_server": conf.is_state_server,
            "nonce": conf.nonce,
            "state_addresses": list(conf.state_addresses),
            "api_addresses": list(conf.api_addresses),
            "values": dict(conf.values),
        }
        if json_output:
            console.print_json(data=payload)
        else:
            table = Table(show_header=True, header_style="bold magenta")
            table.add_column("Setting", style="bold")
            table.add_column("Value")
            for key in ("tag", "dir", "format", "state_server", "nonce"):
                table.add_row(key, str(payload[key]))
            table.add_row("state_addresses", ", ".join(conf.state_addresses) or "-")
            table.add_row("api_addresses", ", ".join(conf.api_addresses) or "-")
            for key, value in sorted(conf.values.items()):
                table.add_row(f"values.{key}", value)
            console.print(table)
        op.success("Reported agent configuration.", changed=0)


@agent_app.command("rotate-password")
def agent_rotate_password(
    ctx: typer.Context,
    tag: str = typer.Argument(..., help="Agent entity tag, e.g. machine-0."),
    data_dir: Path | None = DATA_DIR_OPTION,
    show: bool = typer.Option(False, "--show", help="Print the new password."),
) -> None:
    """Replace an agent's password, keeping the previous one as a fallback."""
    runtime = _get_runtime(ctx)
    root = data_dir or runtime.config.data_dir
    with runtime.logger.operation(
        "agent rotate-password",
        args={"data_dir": str(root), "show": show},
        target={"kind": "agent", "tag": tag},
    ) as op:
        try:
            conf = read_conf(root, tag)
            password = write_new_password(conf)
        except AgentConfigError as exc:
            _environment_error(op, str(exc))

        console.print(f"Password for {tag} rotated.")
        if show:
            console.print(password, markup=False, highlight=False)
        op.success(f"Rotated password for {tag}.", changed=1)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
