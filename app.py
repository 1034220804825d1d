"""HTTP entry point for the Lovassist legal assistant."""

import logging
import sys

import uvicorn

from lovassist.api import create_app
from lovassist.config import get_settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)

logger = logging.getLogger(__name__)

app = create_app(get_settings())


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Run the Lovassist API server.")
    parser.add_argument("--host", default="127.0.0.1", help="Bind address")
    parser.add_argument("--port", type=int, default=8000, help="Bind port")
    args = parser.parse_args()

    logger.info("Starting Lovassist API on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_config=None)


if __name__ == "__main__":
    main()
