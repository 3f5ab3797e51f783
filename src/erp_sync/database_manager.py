"""
DatabaseManager module for the relational sink: catalog lookups, JSON batch inserts, purges and CSV exchange on DuckDB
"""

import duckdb
import json
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .column_mapping import ColumnMapping, MappingError, quote_identifier, validate_identifier
from .sync_context import EndpointDescriptor, TenantAccess

logger = logging.getLogger(__name__)

CSV_EXPORT_PREFIX = "CIS_"
CSV_LOAD_PREFIX = "CISOUT_"
CSV_DELIMITER = "|"


class DatabaseConnectionError(Exception):
    """Raised when database connection operations fail"""
    pass


class TenantNotFoundError(Exception):
    """Raised when no tenant record exists for a tenant code"""
    pass


class DatabaseManager:
    """
    Sink adapter for one DuckDB database file

    Every public operation opens its own connection and closes it when done;
    nothing holds a connection across units of work.
    """

    TENANT_COLUMNS = (
        'CUSTOMER', 'PROD', 'URL', 'GRANT_TYPE', 'CLIENT_ID', 'SCOPE', 'CLIENT_SECRET',
        'ROOT_URL', 'FTP_HOST', 'FTP_USER', 'FTP_PASS', 'FTP_REMOTE_FILE_PATH',
        'FTP_LOCAL_FILE_PATH', 'INITIAL_CATALOG', 'DAY_OFFSET', 'EMAIL_TENANT_ID',
        'EMAIL_CLIENT_ID', 'EMAIL_SECRET', 'EMAIL_SENDER', 'EMAIL_RECIPIENT'
    )

    def __init__(self, db_path: Path, table_prefix: str = "DSD"):
        self.db_path = Path(db_path)
        self.table_prefix = validate_identifier(table_prefix, "table prefix")

    @property
    def api_list_table(self) -> str:
        return f"{self.table_prefix}_API_LIST"

    @property
    def dictionary_table(self) -> str:
        return f"{self.table_prefix}_API_DICTIONARY"

    @property
    def tenant_table(self) -> str:
        return f"{self.table_prefix}_CUSTOMER_INFO"

    @contextmanager
    def connection(self) -> Iterator[duckdb.DuckDBPyConnection]:
        """
        Open a connection for one unit of work and always close it afterwards

        Raises:
            DatabaseConnectionError: If the database cannot be opened
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = duckdb.connect(str(self.db_path))
        except (duckdb.Error, OSError) as e:
            raise DatabaseConnectionError(f"Failed to create database connection: {e}")

        try:
            yield conn
        finally:
            conn.close()

    @staticmethod
    def execute_with_transaction(conn: duckdb.DuckDBPyConnection,
                                 statements: Sequence[tuple]) -> List[Any]:
        """
        Execute several statements atomically with automatic rollback on failure

        Args:
            conn: Open connection
            statements: ``(sql, params)`` pairs executed in order

        Returns:
            First row of each statement's result, in order
        """
        results = []
        conn.begin()
        try:
            for sql, params in statements:
                results.append(conn.execute(sql, params).fetchone())
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        return results

    # ------------------------------------------------------------------
    # Schema
    #
    # The catalog tables are owned by the ERP side in production; these
    # create_* helpers seed local and test databases only.
    # ------------------------------------------------------------------

    def create_metadata_tables(self) -> None:
        """Create the endpoint list and column dictionary tables if missing (seed helper)"""
        api_list_sql = f"""
        CREATE TABLE IF NOT EXISTS {quote_identifier(self.api_list_table)} (
            API_NAME VARCHAR,
            TABLE_NAME VARCHAR NOT NULL,
            ENDPOINT VARCHAR NOT NULL,
            "FILTER" VARCHAR DEFAULT 'N',
            BATCHSIZE INTEGER NOT NULL,
            DIR VARCHAR NOT NULL,
            RUNGROUP VARCHAR NOT NULL
        )
        """

        dictionary_sql = f"""
        CREATE TABLE IF NOT EXISTS {quote_identifier(self.dictionary_table)} (
            TABLENAME VARCHAR NOT NULL,
            COLUMNNAME VARCHAR NOT NULL,
            JSONNAME VARCHAR NOT NULL,
            ORDINAL INTEGER DEFAULT 0
        )
        """

        with self.connection() as conn:
            conn.execute(api_list_sql)
            conn.execute(dictionary_sql)

    def create_tenant_table(self) -> None:
        """Create the tenant registry table if missing (seed helper)"""
        columns = ",\n            ".join(f"{name} VARCHAR" for name in self.TENANT_COLUMNS)
        with self.connection() as conn:
            conn.execute(f"CREATE TABLE IF NOT EXISTS {quote_identifier(self.tenant_table)} ({columns})")

    def create_target_table(self, mapping: ColumnMapping) -> None:
        """Create a target table whose VARCHAR columns are exactly the mapped columns (seed helper)"""
        columns = ", ".join(f"{quote_identifier(column)} VARCHAR" for column in mapping.columns)
        with self.connection() as conn:
            conn.execute(f"CREATE TABLE IF NOT EXISTS {quote_identifier(mapping.table_name)} ({columns})")

    @staticmethod
    def _table_exists(conn: duckdb.DuckDBPyConnection, table_name: str) -> bool:
        row = conn.execute(
            """SELECT COUNT(*) FROM information_schema.tables
               WHERE table_type = 'BASE TABLE' AND upper(table_name) = upper(?)""",
            (table_name,)
        ).fetchone()
        return row[0] > 0

    @staticmethod
    def _table_columns(conn: duckdb.DuckDBPyConnection, table_name: str) -> List[str]:
        rows = conn.execute(
            """SELECT column_name FROM information_schema.columns
               WHERE upper(table_name) = upper(?) ORDER BY ordinal_position""",
            (table_name,)
        ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Catalog lookups
    # ------------------------------------------------------------------

    def get_tenant_access(self, tenant_code: str, production: bool = True) -> TenantAccess:
        """
        Load the access record for a tenant

        Args:
            tenant_code: Tenant key (customer code)
            production: Select the production (``Y``) or test (``N``) record

        Returns:
            TenantAccess for the tenant

        Raises:
            TenantNotFoundError: If no record matches
        """
        logger.info(f"Attempting to get tenant access for {tenant_code}")
        column_list = ", ".join(self.TENANT_COLUMNS)
        query = f"""
        SELECT {column_list} FROM {quote_identifier(self.tenant_table)}
        WHERE CUSTOMER = ? AND PROD = ?
        """

        with self.connection() as conn:
            row = conn.execute(query, (tenant_code, 'Y' if production else 'N')).fetchone()

        if row is None:
            logger.error(f"No customer info found for {tenant_code}")
            raise TenantNotFoundError(f"No customer info found for {tenant_code}")

        record = dict(zip(self.TENANT_COLUMNS, ("" if value is None else str(value) for value in row)))

        try:
            day_offset = int(record['DAY_OFFSET'] or 0)
        except ValueError:
            raise TenantNotFoundError(f"Invalid DAY_OFFSET for {tenant_code}: {record['DAY_OFFSET']!r}")

        recipients = tuple(
            address.strip() for address in record['EMAIL_RECIPIENT'].split(';') if address.strip()
        )

        logger.info(f"Tenant access successfully retrieved for {tenant_code}")
        return TenantAccess(
            tenant_code=tenant_code,
            token_url=record['URL'],
            api_root_url=record['ROOT_URL'],
            client_id=record['CLIENT_ID'],
            client_secret=record['CLIENT_SECRET'],
            scope=record['SCOPE'],
            grant_type=record['GRANT_TYPE'],
            catalog=record['INITIAL_CATALOG'],
            day_offset=day_offset,
            sftp_host=record['FTP_HOST'],
            sftp_user=record['FTP_USER'],
            sftp_password=record['FTP_PASS'],
            sftp_remote_path=record['FTP_REMOTE_FILE_PATH'],
            sftp_local_path=record['FTP_LOCAL_FILE_PATH'],
            email_sender=record['EMAIL_SENDER'],
            email_recipients=recipients
        )

    def get_api_list(self, group: str, direction: str) -> List[EndpointDescriptor]:
        """
        Retrieve the endpoint descriptors for a run group and direction

        A group starting with ``HFS`` names a single table: the row with that
        TABLE_NAME in run group ``ALL`` is returned.

        Args:
            group: Run group (e.g. ``ALL``) or a single ``HFS*`` table name
            direction: ``Inbound`` or ``Outbound``

        Returns:
            Endpoint descriptors ordered by API_NAME
        """
        table = quote_identifier(self.api_list_table)

        if group.upper().startswith("HFS"):
            query = f"""SELECT TABLE_NAME, ENDPOINT, "FILTER", BATCHSIZE FROM {table}
                        WHERE DIR = ? AND RUNGROUP = 'ALL' AND TABLE_NAME = ?
                        ORDER BY API_NAME"""
        else:
            query = f"""SELECT TABLE_NAME, ENDPOINT, "FILTER", BATCHSIZE FROM {table}
                        WHERE DIR = ? AND RUNGROUP = ?
                        ORDER BY API_NAME"""

        logger.info(f"Attempting to connect to {self.db_path} for API list")
        with self.connection() as conn:
            rows = conn.execute(query, (direction, group)).fetchall()

        return [
            EndpointDescriptor(
                table_name=row[0],
                endpoint=row[1],
                filter_template=row[2] if row[2] is not None else "N",
                batch_size=int(row[3])
            )
            for row in rows
        ]

    def get_column_mapping(self, table_name: str) -> ColumnMapping:
        """
        Fetch and validate the column mapping for a target table

        Raises:
            MappingError: If the table has no mapping rows or a row is invalid
        """
        query = f"""
        SELECT COLUMNNAME, JSONNAME FROM {quote_identifier(self.dictionary_table)}
        WHERE upper(TABLENAME) = upper(?)
        ORDER BY ORDINAL, COLUMNNAME
        """

        with self.connection() as conn:
            rows = conn.execute(query, (table_name,)).fetchall()

        if not rows:
            logger.error(f"No column mappings found for table {table_name}")

        return ColumnMapping.from_rows(table_name, rows)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def insert_json_batch(self, table_name: str, records: List[Dict[str, Any]]) -> int:
        """
        Insert a whole page of records in one statement using the table's column mapping

        Args:
            table_name: Target table
            records: Normalised page records

        Returns:
            Number of rows inserted

        Raises:
            MappingError: If the mapping is missing or names columns the table lacks
        """
        mapping = self.get_column_mapping(table_name)
        payload = json.dumps(records)

        try:
            with self.connection() as conn:
                existing = {column.upper() for column in self._table_columns(conn, table_name)}
                missing = [column for column in mapping.columns if column.upper() not in existing]
                if missing:
                    raise MappingError(
                        f"Table {table_name} is missing mapped columns: {', '.join(missing)}"
                    )

                row = conn.execute(mapping.build_insert_sql(), (payload,)).fetchone()
        except Exception as e:
            logger.error(f"Failed to insert JSON into {table_name}: {e}")
            raise

        rows_affected = int(row[0]) if row else 0
        logger.info(f"{rows_affected} rows inserted into {table_name}")
        return rows_affected

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def delete_single_table(self, table_name: str) -> int:
        """
        Delete every row of one table, warning instead of failing if it does not exist

        Returns:
            Number of rows deleted
        """
        with self.connection() as conn:
            if not self._table_exists(conn, table_name):
                logger.warning(f"Table {table_name} does not exist or is not a base table.")
                return 0

            row = conn.execute(f"DELETE FROM {quote_identifier(table_name)}").fetchone()

        rows_affected = int(row[0]) if row else 0
        logger.info(f"Deleted {rows_affected} rows from table {table_name}")
        return rows_affected

    def delete_tables_with_prefix(self, prefix: str, direction: str, group: str) -> Dict[str, int]:
        """
        Purge every listed table whose name starts with ``prefix`` in one transaction

        Args:
            prefix: Table name prefix (e.g. ``HFS``)
            direction: ``Inbound`` or ``Outbound``
            group: Run group the tables belong to

        Returns:
            Rows deleted per table
        """
        query = f"""SELECT DISTINCT TABLE_NAME FROM {quote_identifier(self.api_list_table)}
                    WHERE TABLE_NAME LIKE ? || '%' AND DIR = ? AND RUNGROUP = ?
                    ORDER BY TABLE_NAME"""

        with self.connection() as conn:
            tables = [
                row[0] for row in conn.execute(query, (prefix, direction, group)).fetchall()
                if self._table_exists(conn, row[0])
            ]
            statements = [(f"DELETE FROM {quote_identifier(table)}", ()) for table in tables]
            results = self.execute_with_transaction(conn, statements)

        deleted = {table: int(result[0]) if result else 0 for table, result in zip(tables, results)}
        for table, count in deleted.items():
            logger.info(f"Deleted {count} records from table {table}")
        return deleted

    # ------------------------------------------------------------------
    # CSV exchange
    # ------------------------------------------------------------------

    def export_tables_to_csv(self, local_root: Path, run_date: Optional[datetime] = None) -> Dict[str, int]:
        """
        Write every ``CIS_*`` table to a pipe-delimited file for the outbound batch

        Files land in ``<local_root>/Outbound/<yyyyMMdd>/`` named after the table
        without its ``CIS_`` prefix, with no header row. Empty tables produce no
        file. ``CISOUT_*`` tables hold loaded inbound files and are never exported.

        Args:
            local_root: Tenant's local transfer root
            run_date: Date naming the batch directory, defaults to today

        Returns:
            Rows written per file name
        """
        logger.info(f"Starting CSV export process. Output path: {local_root}")

        with self.connection() as conn:
            tables = [
                row[0] for row in conn.execute(
                    """SELECT table_name FROM information_schema.tables
                       WHERE table_type = 'BASE TABLE' AND starts_with(upper(table_name), ?)
                       ORDER BY table_name""",
                    (CSV_EXPORT_PREFIX,)
                ).fetchall()
            ]

            if not tables:
                logger.warning("No CIS tables found for export.")
                return {}

            output_dir = Path(local_root) / "Outbound" / (run_date or datetime.now()).strftime("%Y%m%d")
            output_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created output directory: {output_dir}")

            exported = {}
            for table in tables:
                row_count = conn.execute(f"SELECT COUNT(*) FROM {quote_identifier(table)}").fetchone()[0]
                if row_count == 0:
                    logger.warning(f"No records found in table {table}. Skipping file creation.")
                    continue

                file_path = output_dir / f"{table[len(CSV_EXPORT_PREFIX):]}.csv"
                conn.execute(
                    f"COPY {quote_identifier(table)} TO {sql_string_literal(str(file_path))} "
                    f"(FORMAT CSV, HEADER false, DELIMITER '{CSV_DELIMITER}')"
                )
                exported[file_path.name] = int(row_count)
                logger.info(f"CSV file created: {file_path} with {row_count} records")

        logger.info("CSV export process completed successfully.")
        return exported

    def load_csv_files(self, source_dir: Path, extension: str = ".csv") -> Dict[str, int]:
        """
        Load downloaded pipe-delimited files into ``CISOUT_<name>`` tables

        ``<name>`` is the file name up to its first underscore, so
        ``ITEMS_20240506.csv`` loads into ``CISOUT_ITEMS``. Each row is stored
        with LOADED_AT and CSVFILE columns ahead of the file's own columns. A
        file whose name is already recorded in CSVFILE is skipped, so reloading
        the same directory adds nothing. A missing table is created from the
        first file loaded into it, with every column VARCHAR.

        Args:
            source_dir: Directory holding the downloaded files
            extension: File extension to load, matched case-insensitively

        Returns:
            Rows added per file name; 0 for files already loaded
        """
        source_dir = Path(source_dir)
        files = sorted(
            path for path in source_dir.iterdir()
            if path.is_file() and path.suffix.lower() == extension.lower()
        )

        loaded = {}
        with self.connection() as conn:
            for csv_file in files:
                table = CSV_LOAD_PREFIX + csv_file.stem.split("_")[0].upper()
                quoted_table = quote_identifier(table)

                if csv_file.stat().st_size == 0:
                    logger.warning(f"{csv_file.name} is empty; nothing loaded into {table}")
                    loaded[csv_file.name] = 0
                    continue

                source = (
                    f"read_csv({sql_string_literal(str(csv_file))}, delim = '{CSV_DELIMITER}', "
                    f"header = false, all_varchar = true)"
                )

                if not self._table_exists(conn, table):
                    conn.execute(
                        f"""CREATE TABLE {quoted_table} AS
                            SELECT CAST(current_timestamp AS TIMESTAMP) AS LOADED_AT,
                                   CAST(NULL AS VARCHAR) AS CSVFILE, *
                            FROM {source} LIMIT 0"""
                    )
                    logger.info(f"Created table {table} for {csv_file.name}")

                existing = conn.execute(
                    f"SELECT COUNT(*) FROM {quoted_table} WHERE CSVFILE = ?", (csv_file.name,)
                ).fetchone()[0]
                if existing:
                    logger.info(f"{existing} records exist from {csv_file.name} in {table} already 0 more records added")
                    loaded[csv_file.name] = 0
                    continue

                try:
                    row = conn.execute(
                        f"""INSERT INTO {quoted_table}
                            SELECT CAST(current_timestamp AS TIMESTAMP), CAST(? AS VARCHAR), * FROM {source}""",
                        (csv_file.name,)
                    ).fetchone()
                except duckdb.Error as e:
                    logger.error(f"Failed to load {csv_file.name} into {table}: {e}")
                    raise

                loaded[csv_file.name] = int(row[0]) if row else 0
                logger.info(f"Successfully added {loaded[csv_file.name]} records to the {table} from {csv_file.name}")

        return loaded


def sql_string_literal(value: str) -> str:
    """Quote a value as a SQL string literal for statements that take no parameters (COPY, read_csv)"""
    return "'" + value.replace("'", "''") + "'"
