"""Unit tests for the bulk table copier and the table-set resolver"""

import psycopg
import pytest

from pg_logical_init import table_copier
from pg_logical_init.errors import (
    CopyFailed,
    InitReplicaCancelled,
    TableListFailed,
    TransactionSetupFailed,
)
from pg_logical_init.node import TableRef
from pg_logical_init.table_copier import NodeDataCopier, PgCopyStream, TableCopier, get_copy_tables
from tests.utils.fakes import TEST_SNAPSHOT, CountingKiller, FakeConnection, FakeRowStream


TABLE_A = TableRef('public', 'a')
TABLE_B = TableRef('public', 'b')


def rows(count):
    return [f'{i}\tvalue {i}\n'.encode() for i in range(1, count + 1)]


@pytest.mark.unit
def test_copy_table_relays_every_chunk_in_order():
    origin = FakeRowStream(tables={TABLE_A: rows(10)})
    target = FakeRowStream()

    stats = TableCopier(origin, target).copy_table(TABLE_A)

    assert target.written[TABLE_A] == rows(10)
    assert stats.chunks == 10
    assert stats.bytes == sum(len(row) for row in rows(10))
    assert origin.closed == [TABLE_A]
    assert target.closed == [TABLE_A]


@pytest.mark.unit
def test_copy_empty_table_still_finishes_target_copy():
    origin = FakeRowStream(tables={})
    target = FakeRowStream()

    stats = TableCopier(origin, target).copy_table(TABLE_B)

    assert target.written[TABLE_B] == []
    assert stats.chunks == 0
    assert target.closed == [TABLE_B]


@pytest.mark.unit
def test_copy_two_tables_from_default_set():
    origin = FakeRowStream(tables={TABLE_A: rows(10), TABLE_B: []})
    target = FakeRowStream()
    copier = TableCopier(origin, target)

    for table in [TABLE_A, TABLE_B]:
        copier.copy_table(table)

    assert len(target.written[TABLE_A]) == 10
    assert len(target.written[TABLE_B]) == 0


@pytest.mark.unit
def test_write_failure_aborts_both_streams():
    origin = FakeRowStream(tables={TABLE_A: rows(10)})
    target = FakeRowStream(fail_write_after=3)

    with pytest.raises(CopyFailed):
        TableCopier(origin, target).copy_table(TABLE_A)

    assert len(target.written[TABLE_A]) == 3
    assert [table for table, _ in origin.aborted] == [TABLE_A]
    assert [table for table, _ in target.aborted] == [TABLE_A]
    assert target.closed == []


@pytest.mark.unit
def test_import_start_failure_aborts_export():
    origin = FakeRowStream(tables={TABLE_A: rows(2)})
    target = FakeRowStream(fail_open=True)

    with pytest.raises(CopyFailed):
        TableCopier(origin, target).copy_table(TABLE_A)

    assert [table for table, _ in origin.aborted] == [TABLE_A]


@pytest.mark.unit
def test_cancel_request_stops_copy_between_chunks():
    origin = FakeRowStream(tables={TABLE_A: rows(10)})
    target = FakeRowStream()
    killer = CountingKiller(after=4)

    with pytest.raises(InitReplicaCancelled):
        TableCopier(origin, target, killer=killer).copy_table(TABLE_A)

    assert len(target.written[TABLE_A]) == 5
    assert target.closed == []
    assert target.aborted


@pytest.mark.unit
def test_get_copy_tables_sends_all_sets_in_one_query():
    conn = FakeConnection(responses={'tables': [('public', 'a'), ('public', 'b')]})

    tables = get_copy_tables(conn, ('default', 'ddl_sql'), 'pglogical')

    assert tables == [TABLE_A, TABLE_B]
    assert len(conn.queries) == 1
    _, params = conn.queries[0]
    assert params == (['default', 'ddl_sql'],)


@pytest.mark.unit
def test_get_copy_tables_failure_is_fatal():
    conn = FakeConnection(fail_on='tables')

    with pytest.raises(TableListFailed):
        get_copy_tables(conn, ['default'], 'pglogical')


@pytest.fixture
def patched_tx(monkeypatch, events):
    monkeypatch.setattr(table_copier, 'start_copy_origin_tx',
                        lambda conn, snapshot: events.append(('origin_tx', conn.name, snapshot)))
    monkeypatch.setattr(table_copier, 'start_copy_target_tx',
                        lambda conn: events.append(('target_tx', conn.name)))
    monkeypatch.setattr(table_copier, 'finish_origin_tx',
                        lambda conn: events.append(('rollback', conn.name)))
    monkeypatch.setattr(table_copier, 'finish_target_tx',
                        lambda conn: events.append(('commit_target', conn.name)))
    monkeypatch.setattr(table_copier, 'get_copy_tables',
                        lambda conn, sets, ext: [TABLE_A, TABLE_B])


@pytest.mark.unit
def test_copy_node_data_transaction_order(patched_tx, node_connection, fake_connect, events,
                                          opened_connections):
    streams = []

    def stream_factory(conn):
        stream = FakeRowStream(tables={TABLE_A: rows(10)})
        streams.append(stream)
        return stream

    copier = NodeDataCopier('pglogical', 'pglogical_init', connect=fake_connect,
                            stream_factory=stream_factory)
    tables = copier.copy_node_data(node_connection, TEST_SNAPSHOT)

    assert tables == [TABLE_A, TABLE_B]
    origin_conn, target_conn = opened_connections
    assert ('origin_tx', origin_conn.name, TEST_SNAPSHOT) in events
    order = [e[0] for e in events if e[0] in ('origin_tx', 'target_tx', 'rollback', 'commit_target')]
    assert order == ['origin_tx', 'target_tx', 'rollback', 'commit_target']
    assert streams[1].written[TABLE_A] == rows(10)
    assert streams[1].written[TABLE_B] == []
    assert origin_conn.closed and target_conn.closed


@pytest.mark.unit
def test_copy_node_data_failure_closes_connections_without_commit(
        patched_tx, node_connection, fake_connect, events, opened_connections):
    def stream_factory(conn):
        return FakeRowStream(tables={TABLE_A: rows(10)}, fail_write_after=1)

    copier = NodeDataCopier('pglogical', 'pglogical_init', connect=fake_connect,
                            stream_factory=stream_factory)
    with pytest.raises(CopyFailed):
        copier.copy_node_data(node_connection, TEST_SNAPSHOT)

    assert 'commit_target' not in [e[0] for e in events]
    assert all(conn.closed for conn in opened_connections)


@pytest.mark.unit
def test_copy_node_data_target_commit_failure_is_fatal(
        monkeypatch, patched_tx, node_connection, fake_connect, opened_connections):
    def failing_commit(conn):
        raise CopyFailed('COMMIT on target node failed')

    monkeypatch.setattr(table_copier, 'finish_target_tx', failing_commit)
    copier = NodeDataCopier('pglogical', 'pglogical_init', connect=fake_connect,
                            stream_factory=lambda conn: FakeRowStream())

    with pytest.raises(CopyFailed):
        copier.copy_node_data(node_connection, TEST_SNAPSHOT)
    assert all(conn.closed for conn in opened_connections)


@pytest.mark.unit
def test_copy_node_data_origin_setup_failure(monkeypatch, patched_tx, node_connection,
                                            fake_connect, opened_connections):
    def failing_begin(conn, snapshot):
        raise TransactionSetupFailed('BEGIN on origin node failed')

    monkeypatch.setattr(table_copier, 'start_copy_origin_tx', failing_begin)
    copier = NodeDataCopier('pglogical', 'pglogical_init', connect=fake_connect,
                            stream_factory=lambda conn: FakeRowStream())

    with pytest.raises(TransactionSetupFailed):
        copier.copy_node_data(node_connection, TEST_SNAPSHOT)
    # target is never connected when the origin side can not start
    assert len(opened_connections) == 1
    assert opened_connections[0].closed


class FakeCopy:
    def __init__(self, chunks=None, write_error=None):
        self.chunks = list(chunks or [])
        self.written = []
        self.write_error = write_error

    def read(self):
        return self.chunks.pop(0) if self.chunks else b''

    def write(self, data):
        if self.write_error is not None:
            raise self.write_error
        self.written.append(data)


class FakeCopyCursor:
    def __init__(self, copy, exits, open_error=None):
        self.copy_obj = copy
        self.exits = exits
        self.open_error = open_error
        self.statements = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.exits.append(('cursor', exc_type))
        return False

    def copy(self, statement):
        self.statements.append(statement)
        if self.open_error is not None:
            raise self.open_error
        cursor = self

        class CopyContext:
            def __enter__(self):
                return cursor.copy_obj

            def __exit__(self, exc_type, exc, tb):
                cursor.exits.append(('copy', exc_type))
                return False

        return CopyContext()


class FakeCopyConnection:
    def __init__(self, cursor):
        self._cursor = cursor

    def cursor(self):
        return self._cursor


@pytest.mark.unit
def test_pg_copy_stream_reads_until_empty_and_closes():
    exits = []
    cursor = FakeCopyCursor(FakeCopy(chunks=[b'1\n', b'2\n']), exits)
    stream = PgCopyStream(FakeCopyConnection(cursor))

    stream.open_read(TABLE_A)
    assert stream.next_chunk() == b'1\n'
    assert stream.next_chunk() == b'2\n'
    assert stream.next_chunk() == b''
    stream.close()

    assert exits == [('copy', None), ('cursor', None)]
    assert stream.description == 'COPY public.a TO STDOUT'


@pytest.mark.unit
def test_pg_copy_stream_open_failure_raises_copy_failed():
    exits = []
    cursor = FakeCopyCursor(FakeCopy(), exits, open_error=psycopg.errors.UndefinedTable('no table'))
    stream = PgCopyStream(FakeCopyConnection(cursor))

    with pytest.raises(CopyFailed, match='COPY public.a FROM STDIN'):
        stream.open_write(TABLE_A)
    assert exits == [('cursor', None)]


@pytest.mark.unit
def test_pg_copy_stream_write_failure_and_abort():
    exits = []
    error = psycopg.OperationalError('connection lost')
    cursor = FakeCopyCursor(FakeCopy(write_error=error), exits)
    stream = PgCopyStream(FakeCopyConnection(cursor))
    stream.open_write(TABLE_A)

    with pytest.raises(CopyFailed) as excinfo:
        stream.write_chunk(b'1\n')
    stream.abort(excinfo.value)

    assert exits == [('copy', CopyFailed), ('cursor', CopyFailed)]
