#!/usr/bin/env python3
"""
Entry point for the tourney API.

Usage:
    python run.py

Environment Variables:
    FLASK_ENV: development, production or testing (default: development)
    PORT: Port to run on (default: 5000)
    LOG_LEVEL: Logging level (default: INFO, DEBUG in development)
"""
import os
import logging

from tourney.app import create_app


def configure_logging(level: str):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )


def run_api():
    """Run the tourney API service."""
    app = create_app()
    configure_logging(app.config.get('LOG_LEVEL', 'INFO'))

    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('FLASK_ENV', 'development') == 'development'

    logging.getLogger(__name__).info(f"Starting tourney API on port {port}...")
    app.run(host='0.0.0.0', port=port, debug=debug)


if __name__ == '__main__':
    run_api()
