"""
Run the studio API.

Usage:
    python -m product_studio
    product-studio          (after pip install)
"""

import sys

import uvicorn

from product_studio.config import StudioConfig
from product_studio.errors import MissingCredential
from product_studio.logger import setup_logger
from product_studio.server import create_app


def main():
    logger = setup_logger()
    try:
        config = StudioConfig.from_env()
    except MissingCredential as e:
        logger.critical("%s", e)
        sys.exit(1)

    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
