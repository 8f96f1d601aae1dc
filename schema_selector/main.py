"""The composition function's main CLI."""

import os

import click
from crossplane.function import logging, runtime

from schema_selector import fn

LOG_LEVELS = {
    "DEBUG": logging.Level.DEBUG,
    "INFO": logging.Level.INFO,
    "WARNING": logging.Level.WARNING,
    "WARN": logging.Level.WARNING,
    "ERROR": logging.Level.ERROR,
}


def resolve_log_level(debug: bool) -> logging.Level:
    """LOG_LEVEL wins over --debug; INFO is the default."""
    log_level_env = os.getenv("LOG_LEVEL", "").upper()
    if log_level_env in LOG_LEVELS:
        return LOG_LEVELS[log_level_env]
    return logging.Level.DEBUG if debug else logging.Level.INFO


@click.command()
@click.option(
    "--debug",
    "-d",
    is_flag=True,
    help="Emit debug logs.",
)
@click.option(
    "--address",
    default="0.0.0.0:9443",
    show_default=True,
    help="Address at which to listen for gRPC connections",
)
@click.option(
    "--tls-certs-dir",
    help="Serve using mTLS certificates.",
    envvar="TLS_SERVER_CERTS_DIR",
)
@click.option(
    "--insecure",
    is_flag=True,
    help="Run without mTLS credentials. "
    "If you supply this flag --tls-certs-dir will be ignored.",
)
def cli(debug: bool, address: str, tls_certs_dir: str, insecure: bool) -> None:  # noqa:FBT001  # We only expect callers via the CLI.
    """A Crossplane composition function that selects Kubernetes schema fields."""
    try:
        level = resolve_log_level(debug)
        logging.configure(level=level)

        logger = logging.get_logger()
        logger.info(f"Starting schema selection function with log level: {level}")
        logger.debug(f"Server address: {address}")
        logger.debug(f"TLS certs dir: {tls_certs_dir}")
        logger.debug(f"Insecure mode: {insecure}")
        runtime.serve(
            fn.FunctionRunner(),
            address,
            creds=runtime.load_credentials(tls_certs_dir),
            insecure=insecure,
        )
    except Exception as e:
        logger = logging.get_logger()
        logger.error(f"Function startup failed: {e}")
        click.echo(f"Cannot run function: {e}")


if __name__ == "__main__":
    cli()
