import logging
import sys

import uvicorn

from mgm_proxy.server import create_app
from mgm_proxy.vars import ConfigurationError, load_settings

logger = logging.getLogger("uvicorn.error")


def main() -> None:
    try:
        settings = load_settings()
    except ConfigurationError as e:
        logging.basicConfig(format="%(levelname)s: %(message)s")
        logger.critical(str(e))
        sys.exit(1)

    config = uvicorn.Config(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )
    server = uvicorn.Server(config)
    logger.info(
        f"MGM proxy starting on :{settings.port} -> {settings.upstream_url}"
    )
    server.run()


if __name__ == "__main__":
    main()
