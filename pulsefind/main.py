"""Main entry point for the PulseFind scan server."""

import os

import uvicorn
from dotenv import load_dotenv

from .api.app import create_app
from .config import get_config
from .utils import setup_logging


def main():
    """Run the PulseFind scan server."""
    _ = load_dotenv()
    config = get_config()
    setup_logging(config.logging)
    uvicorn.run(
        create_app(config),
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
