#!/usr/bin/env python3
"""
Microcredit Ledger Entry Point

Starts the FastAPI server with the ledger engine.
"""

import sys

from microcredit_ledger.api import run_server
from microcredit_ledger.config import get_config
from microcredit_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    print("Starting Microcredit Ledger...")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")

    try:
        run_server(host=config.api_host, port=config.api_port, debug=False)
    except KeyboardInterrupt:
        print("\nShutting down Microcredit Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
