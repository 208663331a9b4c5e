"""
Database connection management for PostgreSQL
"""

import threading
import psycopg2
from psycopg2 import pool
from typing import Optional
from contextlib import contextmanager

from gexwatch.config import DatabaseConfig
from gexwatch.database.password_providers import get_db_password
from gexwatch.errors import PersistenceError
from gexwatch.utils import get_logger

logger = get_logger(__name__)


class ConnectionPool:
    """
    Thread-safe PostgreSQL connection pool

    The underlying psycopg2 pool is created lazily on first use so that
    constructing a pool never touches the network.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self._pool: Optional[pool.ThreadedConnectionPool] = None
        self._lock = threading.Lock()

    def _initialize(self):
        """Create the psycopg2 pool and test one connection"""
        logger.info("Initializing database connection pool...")

        db_password = get_db_password(self.config.password_provider)

        logger.info(
            f"Connecting to PostgreSQL: {self.config.user}@{self.config.host}:"
            f"{self.config.port}/{self.config.name}"
        )

        conn_params = {
            'minconn': self.config.pool_min,
            'maxconn': self.config.pool_max,
            'host': self.config.host,
            'port': self.config.port,
            'database': self.config.name,
            'user': self.config.user,
        }

        # Only add password if it's not None (i.e., not using .pgpass)
        if db_password is not None:
            conn_params['password'] = db_password

        try:
            self._pool = pool.ThreadedConnectionPool(**conn_params)

            test_conn = self._pool.getconn()
            with test_conn.cursor() as cursor:
                cursor.execute("SELECT version();")
                version = cursor.fetchone()
            self._pool.putconn(test_conn)
            logger.info(f"Connected to PostgreSQL: {version[0][:50]}...")

        except psycopg2.OperationalError as e:
            logger.error(f"Failed to connect to database: {e}")
            self._pool = None
            raise PersistenceError(f"Failed to connect to database: {e}") from e

    def getconn(self):
        """
        Get a database connection from the pool

        Raises:
            PersistenceError: If connection cannot be established
        """
        with self._lock:
            if self._pool is None:
                self._initialize()

        try:
            conn = self._pool.getconn()
            logger.debug("Retrieved connection from pool")
            return conn
        except pool.PoolError as e:
            logger.error(f"Failed to get connection from pool: {e}")
            raise PersistenceError(f"Connection pool exhausted: {e}") from e

    def putconn(self, conn):
        """Return a connection to the pool"""
        if self._pool and conn:
            self._pool.putconn(conn)
            logger.debug("Returned connection to pool")

    @contextmanager
    def connection(self):
        """
        Context manager for database connections

        Usage:
            with db_pool.connection() as conn:
                with conn.cursor() as cursor:
                    cursor.execute("SELECT 1")
        """
        conn = self.getconn()
        try:
            yield conn
        finally:
            self.putconn(conn)

    def close(self):
        """Close all connections in the pool"""
        with self._lock:
            if self._pool:
                self._pool.closeall()
                self._pool = None
                logger.info("Closed database connection pool")
