"""
Business logic for the finances service.

Database configuration, application initialization and the owner-level
read operations used by the API. Import parsing and execution live in
import_logic.py.

DO NOT call database methods directly - always use database_manager module.
"""

import logging
import os
import json
import database_manager as db

logger = logging.getLogger(__name__)

# Database configuration state
DATABASE_CONFIGURED = False

# Try multiple paths for database config file (Docker vs local development)
DB_CONFIG_PATHS = [
    "/app/data/finances_db_config.json",  # Docker container path
    "./finances_db_config.json",           # Local development (project root)
    "./data/finances_db_config.json"       # Local development (data subdirectory)
]

SUPPORTED_ENGINES = ("mysql", "sqlite")


# ==================== INITIALIZATION ====================

def _get_config_file_path() -> str:
    """
    Get the path to the database configuration file.

    Tries multiple paths in order:
    1. /app/data/finances_db_config.json (Docker container)
    2. ./finances_db_config.json (local dev - project root)
    3. ./data/finances_db_config.json (local dev - data subdirectory)

    Returns:
        str: Path to the config file (may not exist yet)
    """
    for path in DB_CONFIG_PATHS:
        if os.path.exists(path):
            return path

    if os.path.exists("/app/data"):
        return DB_CONFIG_PATHS[0]  # Docker
    else:
        return DB_CONFIG_PATHS[1]  # Local dev


def load_database_config() -> dict:
    """
    Load database configuration from finances_db_config.json file.

    Returns:
        dict: Database configuration with keys: db_engine, db_host, db_port, db_name,
              db_user, db_password, db_pool_size, db_path
        None if file doesn't exist
    """
    config_file = _get_config_file_path()

    if not os.path.exists(config_file):
        return None

    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
            logger.info(f"Database configuration loaded from {config_file}")
            return config
    except Exception as e:
        logger.error(f"Failed to read {config_file}: {e}")
        return None


def initialize_database(config: dict = None):
    """
    Initialize database connection and create tables if needed.

    Args:
        config: Configuration dict; loaded from finances_db_config.json when omitted
    """
    global DATABASE_CONFIGURED

    try:
        if config is None:
            config = load_database_config()

        if config is None:
            logger.warning("Database not configured - finances_db_config.json not found")
            DATABASE_CONFIGURED = False
            return

        engine = config.get('db_engine', 'mysql')
        if engine not in SUPPORTED_ENGINES:
            raise ValueError(f"Unsupported db_engine '{engine}'. Use one of: {', '.join(SUPPORTED_ENGINES)}")

        if engine == 'sqlite':
            db.initialize_sqlite(config.get('db_path', './finances.db'))
        else:
            host = config.get('db_host', 'localhost')
            port = int(config.get('db_port', 3306))
            database = config.get('db_name', 'finances')

            logger.info(f"Connecting to database: {host}:{port}/{database}")

            db.initialize_connection(
                host=host,
                port=port,
                database_name=database,
                user=config.get('db_user', 'finances_user'),
                password=config.get('db_password', 'finances_pass'),
                pool_size=int(config.get('db_pool_size', 10))
            )

        db.create_tables_if_not_exist()
        logger.info("Database initialized successfully")
        DATABASE_CONFIGURED = True
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        DATABASE_CONFIGURED = False
        # Don't raise - allow app to start so the health check can report the problem


# ==================== OWNER DATA ====================

def get_owner_data_summary(owner_id: str) -> dict:
    """
    Row counts of everything the owner has stored.

    Shown next to the import confirmation so the user can see what will be replaced.

    Raises:
        ValueError: Missing owner id
    """
    if not owner_id or not owner_id.strip():
        raise ValueError("Owner id is required")
    return db.count_owner_data(owner_id.strip())
