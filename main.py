#!/usr/bin/env python3
"""
============================================================================
Silver Settlement Core
Server Entry Point
============================================================================

Reliability Level: SOVEREIGN TIER (Mission-Critical)

Runs the settlement API under uvicorn.

ENVIRONMENT:
    SETTLEMENT_HOST   Bind address (default: 0.0.0.0)
    SETTLEMENT_PORT   Bind port (default: 8000)
    LOG_LEVEL         Root log level (default: INFO)

USAGE:
    python main.py

============================================================================
"""

import logging
import os

import uvicorn
from dotenv import load_dotenv

# Load environment variables first
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("SETTLEMENT")


def main():
    """
    Main entry point.

    USAGE: python main.py
    """
    host = os.getenv("SETTLEMENT_HOST", "0.0.0.0")
    port = int(os.getenv("SETTLEMENT_PORT", "8000"))

    logger.info(f"Settlement server starting | host={host} | port={port}")
    uvicorn.run("app.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
