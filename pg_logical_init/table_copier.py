import time
from contextlib import ExitStack
from dataclasses import dataclass
from logging import getLogger

import psycopg
from psycopg import sql

from .errors import CopyFailed, TableListFailed
from .node import NodeConnection, TableRef
from .pg_api import (
    close_quietly,
    finish_origin_tx,
    finish_target_tx,
    pg_connect,
    start_copy_origin_tx,
    start_copy_target_tx,
)
from .utils import NoInterrupts

logger = getLogger(__name__)


COPY_TABLES_QUERY = 'SELECT nspname, relname FROM {extension}.tables WHERE set_name = ANY(%s::text[])'


def get_copy_tables(origin_conn, replication_sets, extension_name) -> list[TableRef]:
    """Resolve the tables of the given replication sets on the origin.

    All set names go to the server as a single array parameter. Rows are
    returned in catalog scan order.
    """
    query = sql.SQL(COPY_TABLES_QUERY).format(extension=sql.Identifier(extension_name))
    try:
        rows = origin_conn.execute(query, (list(replication_sets),)).fetchall()
    except psycopg.Error as e:
        raise TableListFailed(
            f'could not get table list for replication sets {list(replication_sets)}: {e}'
        ) from e
    return [TableRef(schema_name=row[0], table_name=row[1]) for row in rows]


class RowStream:
    """A single table COPY stream, read side or write side.

    next_chunk() returns an empty value once the source is exhausted;
    close() finishes the stream (for the write side this signals completion);
    abort() gives up on it after a failure.
    """

    def open_read(self, table: TableRef):
        raise NotImplementedError()

    def open_write(self, table: TableRef):
        raise NotImplementedError()

    def next_chunk(self):
        raise NotImplementedError()

    def write_chunk(self, data):
        raise NotImplementedError()

    def close(self):
        raise NotImplementedError()

    def abort(self, exc):
        raise NotImplementedError()


class PgCopyStream(RowStream):
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self._stack = None
        self._copy = None

    def _open(self, query, description):
        self.description = description
        stack = ExitStack()
        try:
            cursor = stack.enter_context(self.conn.cursor())
            self._copy = stack.enter_context(cursor.copy(query))
        except psycopg.Error as e:
            stack.close()
            raise CopyFailed(f"table copy failed, query '{description}': {e}") from e
        self._stack = stack

    def open_read(self, table):
        self._open(sql.SQL('COPY {} TO STDOUT').format(
            sql.Identifier(table.schema_name, table.table_name),
        ), f'COPY {table} TO STDOUT')

    def open_write(self, table):
        self._open(sql.SQL('COPY {} FROM STDIN').format(
            sql.Identifier(table.schema_name, table.table_name),
        ), f'COPY {table} FROM STDIN')

    def next_chunk(self):
        try:
            return self._copy.read()
        except psycopg.Error as e:
            raise CopyFailed(f'reading from origin table failed: {e}') from e

    def write_chunk(self, data):
        try:
            self._copy.write(data)
        except psycopg.Error as e:
            raise CopyFailed(f'writing to target table failed: {e}') from e

    def close(self):
        stack, self._stack, self._copy = self._stack, None, None
        if stack is None:
            return
        try:
            stack.close()
        except psycopg.Error as e:
            raise CopyFailed(f'finishing copy of {self.description} failed: {e}') from e

    def abort(self, exc):
        stack, self._stack, self._copy = self._stack, None, None
        if stack is None:
            return
        try:
            stack.__exit__(type(exc), exc, exc.__traceback__)
        except psycopg.Error as e:
            logger.debug(f'error aborting copy {self.description}: {e}')


@dataclass
class CopyStats:
    chunks: int = 0
    bytes: int = 0
    duration: float = 0.0


class TableCopier:
    """Relays one table at a time from an origin stream into a target stream."""

    def __init__(self, origin_stream: RowStream, target_stream: RowStream, killer=None):
        self.origin_stream = origin_stream
        self.target_stream = target_stream
        self.killer = killer or NoInterrupts()

    def copy_table(self, table: TableRef) -> CopyStats:
        logger.info(f'copying table {table}')
        stats = CopyStats()
        start_time = time.time()

        self.origin_stream.open_read(table)
        try:
            self.target_stream.open_write(table)
        except BaseException as e:
            self.origin_stream.abort(e)
            raise

        try:
            while True:
                data = self.origin_stream.next_chunk()
                if not data:
                    break
                self.target_stream.write_chunk(data)
                stats.chunks += 1
                stats.bytes += len(data)
                self.killer.check_for_interrupts()
            self.origin_stream.close()
        except BaseException as e:
            self.origin_stream.abort(e)
            self.target_stream.abort(e)
            raise

        # send local finish
        self.target_stream.close()

        stats.duration = time.time() - start_time
        logger.info(
            f'finish copying {table}, '
            f'{stats.chunks} chunks, {stats.bytes} bytes in {stats.duration:.1f}s'
        )
        return stats


class NodeDataCopier:
    """Copies the data of all replicated tables from origin to target.

    Both sides run in one long transaction each: the origin one is read only
    and bound to the exported snapshot, the target one is committed once
    every table is copied.
    """

    def __init__(self, extension_name, application_name, killer=None,
                 connect=pg_connect, stream_factory=PgCopyStream):
        self.extension_name = extension_name
        self.application_name = application_name
        self.killer = killer or NoInterrupts()
        self.connect = connect
        self.stream_factory = stream_factory

    def copy_node_data(self, conn: NodeConnection, snapshot: str):
        origin_conn = None
        target_conn = None
        try:
            origin_conn = self.connect(conn.origin.dsn, self.application_name)
            start_copy_origin_tx(origin_conn, snapshot)

            tables = get_copy_tables(origin_conn, conn.replication_sets, self.extension_name)
            logger.info(
                f'{len(tables)} tables to copy for replication sets {list(conn.replication_sets)}'
            )

            target_conn = self.connect(conn.target.dsn, self.application_name)
            start_copy_target_tx(target_conn)

            copier = TableCopier(
                origin_stream=self.stream_factory(origin_conn),
                target_stream=self.stream_factory(target_conn),
                killer=self.killer,
            )
            total = CopyStats()
            for table in tables:
                stats = copier.copy_table(table)
                total.chunks += stats.chunks
                total.bytes += stats.bytes
                self.killer.check_for_interrupts()

            finish_origin_tx(origin_conn)
            finish_target_tx(target_conn)
            logger.info(f'copied {len(tables)} tables, {total.bytes} bytes')
            return tables
        finally:
            close_quietly(origin_conn)
            close_quietly(target_conn)
