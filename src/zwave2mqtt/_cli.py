"""Command line entry point (Typer-based).

Provides :func:`build_cli` which constructs a Typer app that parses the
gateway options (``--version``, ``--log-level``, ``--log-format``,
``--env-file``), loads :class:`~zwave2mqtt._settings.Settings`,
configures logging and runs the :class:`~zwave2mqtt._gateway.Gateway`
until it receives SIGINT or SIGTERM.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import Callable
from typing import Annotated, get_args

import typer
from pydantic import ValidationError

from zwave2mqtt._gateway import Gateway
from zwave2mqtt._logging import configure_logging
from zwave2mqtt._settings import LoggingSettings, Settings

logger = logging.getLogger(__name__)

SERVICE_NAME = "zwave2mqtt"

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

# ---------------------------------------------------------------------------
# Allowed values (extracted from LoggingSettings Literal types)
# ---------------------------------------------------------------------------

_VALID_LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
_VALID_LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)

GatewayFactory = Callable[[Settings], Gateway]


def build_cli(
    *,
    version: str = "",
    gateway_factory: GatewayFactory = Gateway,
) -> typer.Typer:
    """Construct the Typer CLI.

    Args:
        version: Version string shown by ``--version`` and logged.
        gateway_factory: Builds the gateway from the loaded settings.
            Tests pass a factory that injects mock collaborators.

    Returns:
        A configured :class:`typer.Typer` ready to invoke.
    """
    cli = typer.Typer(
        help=f"{SERVICE_NAME} v{version} — Z-Wave to MQTT gateway",
    )

    @cli.callback(invoke_without_command=True)
    def main(
        version_flag: Annotated[
            bool | None,
            typer.Option(
                "--version",
                is_eager=True,
                help="Show version and exit.",
            ),
        ] = None,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Override log level."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Override log format."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Path to .env file."),
        ] = ".env",
    ) -> None:
        if version_flag:
            typer.echo(f"{SERVICE_NAME} v{version}")
            raise typer.Exit()

        if log_level is not None and log_level.upper() not in _VALID_LOG_LEVELS:
            raise typer.BadParameter(
                f"Invalid log level '{log_level}'. "
                f"Choose from: {', '.join(_VALID_LOG_LEVELS)}",
                param_hint="'--log-level'",
            )

        if log_format is not None and log_format.lower() not in _VALID_LOG_FORMATS:
            raise typer.BadParameter(
                f"Invalid log format '{log_format}'. "
                f"Choose from: {', '.join(_VALID_LOG_FORMATS)}",
                param_hint="'--log-format'",
            )

        try:
            settings = Settings(_env_file=env_file)  # type: ignore[call-arg]
        except ValidationError as exc:
            logger.error("Configuration error: %s", exc)
            raise SystemExit(EXIT_CONFIG_ERROR) from exc

        if log_level is not None:
            settings.logging = settings.logging.model_copy(
                update={"level": log_level.upper()},
            )

        if log_format is not None:
            settings.logging = settings.logging.model_copy(
                update={"format": log_format.lower()},
            )

        configure_logging(settings.logging, service=SERVICE_NAME, version=version)

        try:
            gateway = gateway_factory(settings)
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(gateway.run())
        except SystemExit:
            raise
        except Exception as exc:
            logger.error("Runtime error: %s", exc)
            sys.exit(EXIT_RUNTIME_ERROR)

    return cli


def main() -> None:
    """Console script entry point."""
    from zwave2mqtt import __version__  # noqa: PLC0415

    build_cli(version=__version__)()
