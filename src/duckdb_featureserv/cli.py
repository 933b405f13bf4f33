"""Command-line interface for the DuckDB feature server.

Loads configuration, applies command-line overrides, opens the data
source and runs the FastAPI app under uvicorn.
"""

import logging
import sys

import click

from . import APP_NAME, __version__
from .config import ConfigError, dump_config, load_config
from .data.errors import FeatureServError

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


@click.command(name=APP_NAME)
@click.version_option(version=__version__, prog_name=APP_NAME)
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to configuration file",
)
@click.option("--debug", "-d", is_flag=True, default=False, help="Set logging level to DEBUG")
@click.option("--test", "-t", "test_mode", is_flag=True, default=False, help="Serve mock data for testing")
@click.option(
    "--database-path",
    type=str,
    default=None,
    help="Path to DuckDB database file (overrides config)",
)
@click.option("--host", type=str, default=None, help="Host to bind to (overrides config)")
@click.option("--port", type=int, default=None, help="Port to bind to (overrides config)")
def main(config_path, debug, test_mode, database_path, host, port) -> None:
    """Serve spatial tables of a DuckDB database as OGC API - Features."""
    import uvicorn

    from .data.source import open_source
    from .service.app import create_app

    try:
        config = load_config(config_path)
        if database_path:
            config = config.with_overrides("database", path=database_path)
        if host:
            config = config.with_overrides("server", http_host=host)
        if port:
            config = config.with_overrides("server", http_port=port)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    debug = debug or config.server.debug
    configure_logging(debug)
    logger.info("%s %s starting", APP_NAME, __version__)
    dump_config(config)

    try:
        source = open_source(config, test_mode=test_mode)
    except FeatureServError as e:
        logger.error("Cannot start: %s", e)
        sys.exit(1)

    app = create_app(config, source)
    logger.info(
        "Serving %d collections at http://%s:%d",
        len(source.catalog.list()),
        config.server.http_host,
        config.server.http_port,
    )
    uvicorn.run(
        app,
        host=config.server.http_host,
        port=config.server.http_port,
        log_level="debug" if debug else "info",
    )


if __name__ == "__main__":
    main()
