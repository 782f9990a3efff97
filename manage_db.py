#!/usr/bin/env python3
"""
Database management script for deployment.
Run this during the build/deployment pipeline to handle migrations.
"""
import os
import sys
import logging

# Add current directory to path so we can import tourney
sys.path.append(os.getcwd())

from flask_migrate import upgrade
from sqlalchemy.exc import SQLAlchemyError

from tourney.app import create_app

logger = logging.getLogger(__name__)


def deploy():
    """Run deployment tasks."""
    logging.basicConfig(level=logging.INFO)
    logger.info("Starting database migration...")
    app = create_app(os.getenv('FLASK_ENV', 'production'))
    with app.app_context():
        # Run Alembic upgrade to apply migrations
        try:
            upgrade()
            logger.info("Database migrations applied.")
        except SQLAlchemyError as e:
            logger.error(f"Error applying migrations: {e}")
            sys.exit(1)


if __name__ == '__main__':
    deploy()
