#!/usr/bin/env python3
"""
Blog back office - comment moderation and AI agents API server
"""
import logging
import os
import sys

import uvicorn

from agents.registry import AgentRegistry
from config.settings import Settings
from database.db_manager import DatabaseManager
from moderation.rate_guard import RateGuard


def setup_logging(log_dir: str = "logs"):
    """Setup logging with file and console handlers"""
    from logging.handlers import RotatingFileHandler

    # Create logs directory if it doesn't exist
    os.makedirs(log_dir, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.INFO)
    root_logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # File handler - all logs
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'blog-backoffice.log'),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    # Error file handler - only errors
    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'blog-backoffice-errors.log'),
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)
    root_logger.addHandler(error_handler)


logger = logging.getLogger(__name__)


def prepare_database(settings) -> DatabaseManager:
    """Create tables, prune the submission ledger and seed agents if asked to"""
    db_manager = DatabaseManager(settings.DB_PATH)
    db_manager.init_db()

    stats = db_manager.get_statistics()
    logger.info("Database initialized. Statistics:")
    logger.info(f"  Total comments: {stats['total']}")
    logger.info(f"  Approved: {stats['approved']}")
    logger.info(f"  Pending: {stats['pending']}")
    logger.info(f"  AI agents: {stats['agents']}")
    logger.info(f"  AI executions: {stats['executions']}")

    RateGuard(db_manager).prune()

    if settings.SEED_DEFAULT_AGENTS:
        created = AgentRegistry(db_manager).seed_defaults()
        if not created:
            logger.info("Default agents not seeded (registry not empty)")

    return db_manager


def main():
    """Main application entry point"""
    setup_logging(os.getenv('LOG_DIR', 'logs'))

    logger.info("=" * 60)
    logger.info("Blog Back Office - comment moderation & AI agents")
    logger.info("=" * 60)

    settings = Settings.load()
    is_valid, errors = settings.validate()

    if not is_valid:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        logger.error("Please check your .env file")
        sys.exit(1)

    logger.info("Initializing database...")
    try:
        prepare_database(settings)
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}", exc_info=True)
        sys.exit(1)

    if settings.BOT_TOKEN and settings.ALERT_CHAT_ID:
        logger.info("Telegram relay of notifications enabled")
    else:
        logger.info("Telegram relay skipped (not configured)")

    logger.info(f"Starting API server on {settings.API_HOST}:{settings.API_PORT}")
    uvicorn.run(
        "api_server:create_app",
        factory=True,
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=False,
        log_config=None,
        log_level="info"
    )
    logger.info("Shutdown complete")


if __name__ == "__main__":
    try:
        main()
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
