"""Standalone script to run the chat support server.

Run from the backend directory:
    python run_server.py

Or with uvicorn directly:
    uvicorn support_chat.main:app --host 0.0.0.0 --port 5000
"""

import logging
import os
import sys
from pathlib import Path

import uvicorn

# Add backend directory to path
backend_dir = Path(__file__).resolve().parent
sys.path.insert(0, str(backend_dir))

from support_chat.config import settings

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the API and WebSocket server."""
    port = int(os.environ.get("PORT", "5000"))
    logger.info("=" * 50)
    logger.info("Starting %s on port %d (%s)", settings.app_name, port, settings.environment)
    logger.info("=" * 50)

    uvicorn.run(
        "support_chat.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
