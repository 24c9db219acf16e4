#!/usr/bin/env python3
"""
Run the identity reconciliation HTTP service.

Usage:
    python scripts/run_server.py
    python scripts/run_server.py --port 8080
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from api.app import create_app
from config.logging import logger
from config.settings import settings
from processing.database import init_db


def main():
    parser = argparse.ArgumentParser(description="Run the /identify service")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=settings.PORT)
    args = parser.parse_args()

    init_db()
    app = create_app()
    logger.info(f"Server is running on port {args.port}")
    app.run(host=args.host, port=args.port, debug=settings.DEBUG, threaded=True)


if __name__ == "__main__":
    main()
