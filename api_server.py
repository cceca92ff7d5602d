#!/usr/bin/env python
"""
Run the RiskMate API without installing the package

    python api_server.py
"""
import os
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from riskmate.api_server import app  # noqa: E402


if __name__ == "__main__":
    import logging

    import uvicorn

    logger = logging.getLogger(__name__)

    try:
        port = int(os.getenv("PORT", 8000))
    except ValueError:
        logger.warning(f"Invalid PORT value: {os.getenv('PORT')}, using default 8000")
        port = 8000

    logger.info("=" * 50)
    logger.info(f"Starting RiskMate API server on port {port}")
    logger.info(f"Health check endpoint: http://0.0.0.0:{port}/health")
    logger.info("=" * 50)

    try:
        uvicorn.run(
            app,
            host="0.0.0.0",
            port=port,
            log_config=None,
            access_log=True,
        )
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)
