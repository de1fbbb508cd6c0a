"""
PostgreSQL-backed table store with connection pooling.
Each batch is inserted in a single transaction via execute_values.
"""
from contextlib import contextmanager
from threading import Lock
from typing import Optional, Set

import psycopg2
import psycopg2.extras
from psycopg2 import errorcodes, errors, pool, sql
from psycopg2.extensions import connection as Connection

from .chunker import BatchUnit
from .config import IngestConfig
from .errors import ConflictError, RateLimitedError, StoreError
from .logger import StructuredLogger, get_logger
from .models import FLIGHT_SCHEMA, RecordSchema
from .store import TableStore


RATE_LIMIT_CODES = {
    errorcodes.TOO_MANY_CONNECTIONS,
    errorcodes.CONFIGURATION_LIMIT_EXCEEDED,
}
RATE_LIMIT_MARKERS = ("429", "rate limit", "too many requests", "too many connections")


def classify_error(error: Exception) -> StoreError:
    """
    Map a driver exception onto the store error taxonomy.

    Returns:
        ConflictError for duplicate keys, RateLimitedError for quota and
        connection-limit errors, StoreError for everything else
    """
    pgcode = getattr(error, "pgcode", None)
    message = str(error)

    if isinstance(error, errors.UniqueViolation) or pgcode == errorcodes.UNIQUE_VIOLATION:
        return ConflictError(message)

    lowered = message.lower()
    if (
        isinstance(error, (errors.TooManyConnections, errors.ConfigurationLimitExceeded))
        or pgcode in RATE_LIMIT_CODES
        or any(marker in lowered for marker in RATE_LIMIT_MARKERS)
    ):
        return RateLimitedError(message)

    return StoreError(message)


class PostgresTableStore(TableStore):
    """
    Table store on PostgreSQL.

    Tables are keyed by (partition_key, row_key), so a reinserted row
    surfaces as a unique violation and is reported as a conflict.
    """

    def __init__(
        self,
        config: IngestConfig,
        schema: RecordSchema = FLIGHT_SCHEMA,
        logger: Optional[StructuredLogger] = None,
        connection_pool: Optional[pool.AbstractConnectionPool] = None,
    ):
        self.config = config
        self.schema = schema
        self.logger = logger or get_logger()
        self._ensured: Set[str] = set()
        self._ensured_lock = Lock()

        if connection_pool is not None:
            self.pool = connection_pool
            return

        size = max(config.connection_pool_size, config.thread_count)
        try:
            self.pool = psycopg2.pool.ThreadedConnectionPool(
                minconn=1,
                maxconn=size,
                dsn=config.connection_string,
                connect_timeout=config.db_connect_timeout
            )
            self.logger.info("Database connection pool created", tier=config.tier, size=size)
        except psycopg2.Error as e:
            self.logger.error("Failed to create connection pool", error=str(e))
            raise classify_error(e) from e

    @contextmanager
    def get_connection(self) -> Connection:
        """
        Get connection from pool as context manager.
        Commits on success, rolls back on error, always returns it to the pool.
        """
        conn = None
        try:
            conn = self.pool.getconn()
            conn.autocommit = False
            yield conn
            conn.commit()
        except Exception:
            if conn:
                conn.rollback()
            raise
        finally:
            if conn:
                self.pool.putconn(conn)

    def test_connection(self) -> bool:
        """Test database connection."""
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT version()")
                    version = cur.fetchone()[0]
                    self.logger.info("Database connected", version=version[:50])
            return True
        except psycopg2.Error as e:
            self.logger.error("Database connection failed", error=str(e))
            return False

    def _create_table_sql(self, table_name: str) -> sql.Composed:
        column_defs = [
            sql.SQL("{} TEXT NOT NULL").format(sql.Identifier("partition_key")),
            sql.SQL("{} TEXT NOT NULL").format(sql.Identifier("row_key")),
        ]
        for spec in self.schema.fields:
            column_defs.append(
                sql.SQL("{} {}").format(sql.Identifier(spec.name), sql.SQL(spec.sql_type))
            )
        column_defs.append(sql.SQL("PRIMARY KEY (partition_key, row_key)"))

        return sql.SQL("CREATE TABLE IF NOT EXISTS {} ({})").format(
            sql.Identifier(table_name),
            sql.SQL(", ").join(column_defs),
        )

    def ensure_table_exists(self, table_name: str) -> None:
        """Create the table if missing. Safe to call repeatedly."""
        with self._ensured_lock:
            if table_name in self._ensured:
                return

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(self._create_table_sql(table_name))
        except psycopg2.Error as e:
            self.logger.error("Failed to create table", table=table_name, error=str(e))
            raise classify_error(e) from e

        with self._ensured_lock:
            self._ensured.add(table_name)
        self.logger.info("Table ready", table=table_name)

    def execute_batch(self, table_name: str, batch: BatchUnit) -> None:
        """
        Insert all operations of a batch in one transaction.

        Raises:
            ConflictError: a row with the same key already exists
            RateLimitedError: the server refused the call for capacity reasons
            StoreError: any other failure, or a batch spanning partitions
        """
        if not batch.operations:
            return

        mixed = {op.record.partition_key for op in batch.operations} - {batch.partition_key}
        if mixed:
            raise StoreError(
                f"Batch for partition '{batch.partition_key}' contains other "
                f"partitions: {', '.join(sorted(mixed))}"
            )

        columns = self.schema.column_names()
        query = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
            sql.Identifier(table_name),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        )
        rows = [op.record.to_row() for op in batch.operations]

        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    psycopg2.extras.execute_values(cur, query, rows, page_size=len(rows))
        except psycopg2.Error as e:
            raise classify_error(e) from e

    def count_rows(self, table_name: str) -> int:
        """Row count of table_name, 0 if the table does not exist."""
        check_query = """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public' AND table_name = %s
            )
        """
        try:
            with self.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(check_query, (table_name,))
                    if not cur.fetchone()[0]:
                        return 0
                    cur.execute(
                        sql.SQL("SELECT COUNT(*) FROM {}").format(sql.Identifier(table_name))
                    )
                    return cur.fetchone()[0]
        except psycopg2.Error as e:
            raise classify_error(e) from e

    def close(self):
        """Close all connections in pool."""
        if getattr(self, "pool", None) is not None:
            self.pool.closeall()
            self.logger.info("Database connection pool closed")
