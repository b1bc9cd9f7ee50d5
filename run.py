#!/usr/bin/env python3
"""
Loan Ledger Entry Point

Starts the FastAPI server with the loan ledger.
"""

import sys

import uvicorn

from loan_ledger.config import get_config
from loan_ledger.logging_config import setup_logging_from_config


def run_server(host: str, port: int, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "loan_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


if __name__ == "__main__":
    config = get_config()
    logger = setup_logging_from_config(config)
    logger.info(f"Starting loan ledger on {config.api_host}:{config.api_port} ({config.database_url})")

    try:
        run_server(host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        logger.info("Shutting down loan ledger")
    except Exception as e:
        logger.error(f"Error starting server: {e}")
        sys.exit(1)
