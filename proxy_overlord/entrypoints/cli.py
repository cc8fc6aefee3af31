"""Proxy overlord CLI entrypoint.

Command-line interface for running and inspecting the overlord.
"""

from __future__ import annotations

import functools
import logging
import sys
from dataclasses import replace
from pathlib import Path

import click

from proxy_overlord.adapters.factory import ConfigFactory, OverlordFactory
from proxy_overlord.core.errors import OverlordCliError
from proxy_overlord.domain.config import OverlordConfig
from proxy_overlord.domain.exceptions import OverlordError
from proxy_overlord.shared.config_io import get_global_config_path, save_config
from proxy_overlord.version import __version__

DEFAULT_LOG_FILE = Path.home() / ".proxy-overlord" / "overlord.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def handle_cli_errors(command_name: str):
    """Decorator to handle common CLI errors.

    OverlordCliError propagates unchanged; domain and runtime errors are
    converted to OverlordCliError so click prints them with their hint.

    Args:
        command_name: Name of the command for error messages.

    Returns:
        Decorated function with error handling.
    """

    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except OverlordCliError:
                raise
            except OverlordError as e:
                raise OverlordCliError(e.message, hint=e.hint) from e
            except (FileNotFoundError, ValueError) as e:
                raise OverlordCliError(
                    str(e),
                    hint="Check the configuration file, or run 'proxy-overlord init-config'",
                ) from e
            except RuntimeError as e:
                raise OverlordCliError(
                    str(e),
                    hint="Run with --verbose for more details",
                ) from e
            except Exception as e:
                ctx = click.get_current_context()
                if ctx.obj.get("verbose", False):
                    import traceback

                    traceback.print_exc()
                raise OverlordCliError(
                    f"Unexpected error in {command_name}: {e}",
                    hint="Run with --verbose for more details",
                ) from e

        return wrapper

    return decorator


def _load_config(config_path: Path | None) -> OverlordConfig:
    """Load configuration from the given file or the global config."""
    provider = ConfigFactory().create_config_provider()
    return provider.load(config_path)


def _configure_logging(level: str, log_file: Path) -> None:
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(),
        ],
    )


@click.group()
@click.version_option(version=__version__, prog_name="proxy-overlord")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Show tracebacks for unexpected errors.",
)
@click.option(
    "--config",
    "config_path",
    type=click.Path(path_type=Path, dir_okay=False),
    default=None,
    help="Configuration file (default: the global config).",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Path | None) -> None:
    """Proxy overlord - remote control for a managed proxy.

    Starts, stops, reconfigures, and resets a single proxy instance on behalf
    of test harnesses speaking the Proxy Overlord Protocol.
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--host", type=str, default=None, help="Address to listen on.")
@click.option("--port", type=int, default=None, help="TCP port to listen on.")
@click.option(
    "--prefix",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Proxy installation prefix.",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    default="INFO",
    show_default=True,
    help="Log level.",
)
@click.option(
    "--log-file",
    type=click.Path(path_type=Path, dir_okay=False),
    default=DEFAULT_LOG_FILE,
    show_default=True,
    help="Overlord log file.",
)
@click.pass_context
@handle_cli_errors("serve")
def serve(
    ctx: click.Context,
    host: str | None,
    port: int | None,
    prefix: Path | None,
    log_level: str,
    log_file: Path,
) -> None:
    """Run the overlord until interrupted."""
    config = _load_config(ctx.obj.get("config_path"))

    server_overrides = {
        key: value for key, value in (("host", host), ("port", port)) if value is not None
    }
    if server_overrides:
        config = replace(config, server=replace(config.server, **server_overrides))
    if prefix is not None:
        config = replace(config, proxy=replace(config.proxy, prefix=prefix))

    _configure_logging(log_level, log_file)

    factory = OverlordFactory(config)
    controller = factory.create_controller()
    controller.boot()
    server = factory.create_server(controller)
    try:
        server.run()
    except OSError as e:
        raise OverlordCliError(
            f"Cannot listen on {config.server.host}:{config.server.port}: {e}",
            hint="Is another overlord running? Pass --port to listen elsewhere",
        ) from e


@cli.command()
@click.pass_context
@handle_cli_errors("status")
def status(ctx: click.Context) -> None:
    """Show the state of the managed proxy."""
    config = _load_config(ctx.obj.get("config_path"))
    supervisor = OverlordFactory(config).create_supervisor()

    instance = supervisor.current_instance()
    if instance is not None and supervisor.is_alive(instance):
        click.echo(f"✓ Proxy is running (PID {instance.pid})")
    else:
        click.echo("✗ Proxy is not running")

    click.echo("\nDetails:")
    click.echo(f"  Prefix: {config.proxy.prefix}")
    click.echo(f"  PID file: {config.proxy.pid_path}")
    click.echo(f"  Configuration: {config.proxy.configuration_path}")
    click.echo(f"  General log: {config.proxy.general_log_path}")
    click.echo(f"  Overlord: {config.server.host}:{config.server.port}")


@cli.command(name="init-config")
@click.argument(
    "path",
    type=click.Path(path_type=Path, dir_okay=False),
    required=False,
)
@click.option("--force", "-f", is_flag=True, help="Overwrite an existing file.")
@handle_cli_errors("init-config")
def init_config(path: Path | None, force: bool) -> None:
    """Write a configuration file with default values.

    PATH defaults to the global config location.
    """
    target = path or get_global_config_path()
    if target.exists() and not force:
        raise OverlordCliError(
            f"{target} already exists",
            hint="Use --force to overwrite it",
        )
    save_config(OverlordConfig.default(), target)
    click.echo(f"✓ Wrote {target}")


def main() -> int:
    """Main entrypoint for the CLI."""
    try:
        cli(obj={})
        return 0
    except Exception as e:
        click.echo(f"Error: {e}", err=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
