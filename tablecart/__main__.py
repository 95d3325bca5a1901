"""Run the cart synchronization server: ``python -m tablecart``."""
import sys

from aiohttp import web

from tablecart.api.server import create_app
from tablecart.core.config import load_settings
from tablecart.core.exceptions import TableCartException
from tablecart.logging_config import setup_logging


def main() -> None:
    try:
        settings = load_settings()
    except TableCartException as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(2)

    logger = setup_logging(settings.log_level)

    try:
        app = create_app(settings)
    except TableCartException as e:
        logger.error(f"Failed to start: {e.message}")
        sys.exit(1)

    logger.info(f"Starting tablecart on {settings.host}:{settings.port}")
    web.run_app(app, host=settings.host, port=settings.port, access_log=None)


if __name__ == "__main__":
    main()
