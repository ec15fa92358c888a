"""
Database manager for the finances import service.

All database CRUD operations are performed here using PeeWee ORM.
This module contains PURE CRUD functions - no validation, no logic.
All data preparation and validation happens in import_logic.py.

Write functions are not transactional on their own: callers run them inside
unit_of_work() so that a multi-step write commits or rolls back as one.
"""

import logging
import time
from peewee import SqliteDatabase, OperationalError, fn
from playhouse.pool import PooledMySQLDatabase
from database_model import (
    database,
    ALL_MODELS,
    OWNER_WIPE_ORDER,
    Category,
    Month,
    Expense,
    Income,
    RecurringExpense
)

logger = logging.getLogger(__name__)

# Connection retry configuration
MAX_RETRIES = 3
RETRY_DELAY = 1  # seconds

# Query performance tracking
ENABLE_QUERY_METRICS = True  # Set to False in production for performance
SLOW_QUERY_THRESHOLD = 1.0  # Log queries taking longer than 1 second


# ==================== INITIALIZATION ====================

def initialize_connection(host: str = "localhost", port: int = 3306,
                         database_name: str = "finances",
                         user: str = "finances_user",
                         password: str = "finances_pass",
                         pool_size: int = 10,
                         pool_recycle: int = 3600) -> None:
    """
    Initialize MySQL database connection with connection pooling.

    Args:
        host: Database host
        port: Database port
        database_name: Database name
        user: Database user
        password: Database password
        pool_size: Maximum number of connections in pool (default: 10)
        pool_recycle: Recycle connections after this many seconds (default: 3600)
    """
    try:
        pooled = PooledMySQLDatabase(
            database_name,
            host=host,
            port=port,
            user=user,
            password=password,
            charset='utf8mb4',
            max_connections=pool_size,
            stale_timeout=pool_recycle,
            timeout=10  # Connection timeout
        )
        database.initialize(pooled)

        # Explicitly connect to initialize the connection pool
        if database.is_closed():
            database.connect()

        logger.info(f"Database connection pool initialized: {host}:{port}/{database_name} "
                   f"(pool_size={pool_size}, recycle={pool_recycle}s)")
    except Exception as e:
        logger.error(f"Failed to initialize database connection: {e}")
        raise


def initialize_sqlite(database_path: str) -> None:
    """
    Initialize a SQLite database (local development and tests).

    Foreign keys are switched on so that SQLite enforces the same
    parent/child rules as MySQL.

    Args:
        database_path: Path to SQLite database file
    """
    database.initialize(SqliteDatabase(database_path, pragmas={'foreign_keys': 1}))
    database.connect(reuse_if_open=True)
    logger.info(f"SQLite database initialized: {database_path}")


def check_connection() -> bool:
    """
    Check if database connection is healthy.

    Returns True if connection is alive, False otherwise.
    """
    try:
        database.execute_sql('SELECT 1')
        return True
    except Exception as e:
        logger.warning(f"Database connection check failed: {e}")
        return False


def reconnect() -> bool:
    """
    Attempt to reconnect to database.

    Returns True if reconnection successful, False otherwise.
    """
    try:
        if not database.is_closed():
            database.close()
        database.connect()
        logger.info("Database reconnection successful")
        return True
    except Exception as e:
        logger.error(f"Database reconnection failed: {e}")
        return False


def execute_with_retry(operation, *args, **kwargs):
    """
    Execute database operation with retry logic for transient failures.

    Args:
        operation: Function to execute
        *args, **kwargs: Arguments to pass to operation

    Returns:
        Result of operation

    Raises:
        Exception: If all retries exhausted
    """
    last_exception = None

    for attempt in range(MAX_RETRIES):
        try:
            # Check connection health before operation
            if attempt > 0 and not check_connection():
                logger.info("Connection unhealthy, attempting reconnect...")
                reconnect()

            return operation(*args, **kwargs)

        except OperationalError as e:
            last_exception = e
            logger.warning(f"Database operation failed (attempt {attempt + 1}/{MAX_RETRIES}): {e}")

            if attempt < MAX_RETRIES - 1:
                time.sleep(RETRY_DELAY)
                reconnect()
            else:
                logger.error(f"Database operation failed after {MAX_RETRIES} attempts")
                raise last_exception

        except Exception as e:
            # Non-retryable error, raise immediately
            logger.error(f"Non-retryable database error: {e}")
            raise

    raise last_exception


def create_tables_if_not_exist() -> None:
    """
    Create all tables if they don't exist.

    Note: PeeWee's safe=True checks if tables exist, but may still try to
    add indexes. We catch duplicate key errors which can happen if tables
    already exist with indexes from a previous run.
    """
    try:
        database.create_tables(ALL_MODELS, safe=True)
        logger.info("Database tables created/verified")
    except OperationalError as e:
        if "Duplicate key name" in str(e) or "Duplicate entry" in str(e):
            logger.info("Database tables already exist with indexes - skipping creation")
        else:
            logger.error(f"Failed to create tables: {e}")
            raise
    except Exception as e:
        logger.error(f"Failed to create tables: {e}")
        raise


def close_connection() -> None:
    """Close database connection."""
    if not database.is_closed():
        database.close()
        logger.info("Database connection closed")


def unit_of_work():
    """
    Explicit transaction boundary for multi-step writes.

    Usage:
        with db.unit_of_work():
            db.wipe_owner_data(user_id)
            db.create_category(...)

    Leaving the block normally commits; any exception rolls back every
    statement issued inside it and is re-raised.
    """
    return database.atomic()


def with_retry(func):
    """
    Decorator to wrap database read operations with retry logic.

    Automatically retries on transient connection failures (OperationalError).
    Used for SELECT queries to ensure connection resilience.
    """
    def wrapper(*args, **kwargs):
        try:
            return execute_with_retry(func, *args, **kwargs)
        except Exception as e:
            logger.error(f"Failed to {func.__name__} after all retries: {e}")
            raise
    wrapper.__name__ = func.__name__
    return wrapper


def log_query_time(func):
    """
    Decorator to log query execution time for performance monitoring.

    Logs warning for queries exceeding SLOW_QUERY_THRESHOLD.
    """
    def wrapper(*args, **kwargs):
        if not ENABLE_QUERY_METRICS:
            return func(*args, **kwargs)

        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            elapsed = time.time() - start_time

            if elapsed > SLOW_QUERY_THRESHOLD:
                logger.warning(f"Slow query in {func.__name__}: {elapsed:.3f}s")
            else:
                logger.debug(f"Query {func.__name__}: {elapsed:.3f}s")

            return result
        except Exception as e:
            elapsed = time.time() - start_time
            logger.error(f"Query failed in {func.__name__} after {elapsed:.3f}s: {e}")
            raise
    wrapper.__name__ = func.__name__
    return wrapper


# ==================== OWNER WIPE ====================

def delete_owner_rows(model, user_id: str) -> int:
    """
    Delete every row of one table that belongs to the owner.

    Returns:
        int: Number of deleted rows
    """
    deleted = model.delete().where(model.user_id == user_id).execute()
    logger.info(f"Deleted {deleted} rows from {model._meta.table_name} for user {user_id}")
    return deleted


@log_query_time
def wipe_owner_data(user_id: str) -> dict:
    """
    Delete all of the owner's financial rows, children before parents.

    Must be called inside unit_of_work().

    Returns:
        Dict of table name → deleted row count
    """
    return {
        model._meta.table_name: delete_owner_rows(model, user_id)
        for model in OWNER_WIPE_ORDER
    }


# ==================== CATEGORY CRUD ====================

def create_category(data: dict) -> Category:
    """Create category with provided data dict."""
    category = Category(**data)
    category.save(force_insert=True)
    logger.debug(f"Created category: {category.id} ({category.name})")
    return category


@with_retry
def get_categories_by_owner(user_id: str) -> list:
    """Get owner's categories in sort order."""
    return list(Category
                .select()
                .where(Category.user_id == user_id)
                .order_by(Category.sort_order))


# ==================== MONTH CRUD ====================

def create_month(data: dict) -> Month:
    """Create month with provided data dict."""
    month = Month(**data)
    month.save(force_insert=True)
    logger.debug(f"Created month: {month.id} ({month.year}-{month.month:02d})")
    return month


@with_retry
def get_months_by_owner(user_id: str) -> list:
    """Get owner's months, oldest first."""
    return list(Month
                .select()
                .where(Month.user_id == user_id)
                .order_by(Month.year, Month.month))


# ==================== EXPENSE CRUD ====================

def create_expense(data: dict) -> Expense:
    """Create expense with provided data dict."""
    expense = Expense(**data)
    expense.save(force_insert=True)
    return expense


@with_retry
def get_expenses_by_month(month_id: str) -> list:
    """Get all expenses of a month ordered by date."""
    return list(Expense
                .select()
                .where(Expense.month_id == month_id)
                .order_by(Expense.expense_date))


# ==================== INCOME CRUD ====================

def create_income(data: dict) -> Income:
    """Create income with provided data dict."""
    income = Income(**data)
    income.save(force_insert=True)
    return income


@with_retry
def get_incomes_by_month(month_id: str) -> list:
    """Get all incomes of a month ordered by date."""
    return list(Income
                .select()
                .where(Income.month_id == month_id)
                .order_by(Income.income_date))


# ==================== OWNER SUMMARY ====================

@with_retry
def count_owner_data(user_id: str) -> dict:
    """
    Count the owner's rows per table.

    Returns:
        {"categories": 12, "months": 24, "expenses": 830, "incomes": 3,
         "recurring_expenses": 4}
    """
    def _count(model):
        return (model
                .select(fn.COUNT(model.id))
                .where(model.user_id == user_id)
                .scalar())

    return {
        "categories": _count(Category),
        "months": _count(Month),
        "expenses": _count(Expense),
        "incomes": _count(Income),
        "recurring_expenses": _count(RecurringExpense),
    }
