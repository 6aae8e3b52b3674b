from logging import getLogger

import psycopg
from psycopg import sql
from psycopg.conninfo import make_conninfo

from .errors import ConnectionFailed, CopyFailed, TransactionSetupFailed
from .utils import mask_dsn

logger = getLogger(__name__)


ORIGIN_TX_SETUP_QUERY = '''
BEGIN TRANSACTION ISOLATION LEVEL REPEATABLE READ, READ ONLY;
SET TRANSACTION SNAPSHOT {snapshot};
SET DATESTYLE = ISO;
SET INTERVALSTYLE = POSTGRES;
SET extra_float_digits TO 3;
SET statement_timeout = 0;
SET lock_timeout = 0;
'''

TARGET_TX_SETUP_QUERY = '''
BEGIN TRANSACTION ISOLATION LEVEL READ COMMITTED;
SET DATESTYLE = ISO;
SET INTERVALSTYLE = POSTGRES;
SET extra_float_digits TO 3;
SET statement_timeout = 0;
SET lock_timeout = 0;
'''


def _connect(conninfo, what):
    try:
        # transactions are started explicitly by the setup scripts
        return psycopg.connect(conninfo, autocommit=True)
    except psycopg.Error as e:
        logger.error(f'could not connect to the postgresql server{what}: {e}')
        raise ConnectionFailed(
            f'could not connect to the postgresql server{what}: {e} '
            f'(dsn was: {mask_dsn(conninfo)})'
        ) from e


def pg_connect(dsn, application_name):
    """Make a standard connection, raise ConnectionFailed on failure."""
    conninfo = make_conninfo(dsn, fallback_application_name=application_name)
    return _connect(conninfo, '')


def pg_connect_replica(dsn, application_name):
    """Make a logical replication protocol connection."""
    conninfo = make_conninfo(
        dsn,
        replication='database',
        fallback_application_name=application_name,
    )
    return _connect(conninfo, ' in replication mode')


def start_copy_origin_tx(conn, snapshot):
    query = sql.SQL(ORIGIN_TX_SETUP_QUERY).format(snapshot=sql.Literal(snapshot))
    try:
        conn.execute(query)
    except psycopg.Error as e:
        raise TransactionSetupFailed(f'BEGIN on origin node failed: {e}') from e
    logger.debug(f'origin transaction started with snapshot {snapshot}')


def start_copy_target_tx(conn):
    try:
        conn.execute(TARGET_TX_SETUP_QUERY)
    except psycopg.Error as e:
        raise TransactionSetupFailed(f'BEGIN on target node failed: {e}') from e
    logger.debug('target transaction started')


def finish_origin_tx(conn):
    """Roll back the read only origin transaction; a failure is only logged."""
    try:
        conn.execute('ROLLBACK')
    except psycopg.Error as e:
        logger.warning(f'ROLLBACK on origin node failed: {e}')


def finish_target_tx(conn):
    try:
        conn.execute('COMMIT')
    except psycopg.Error as e:
        raise CopyFailed(f'COMMIT on target node failed: {e}') from e


def close_quietly(conn):
    if conn is None:
        return
    try:
        conn.close()
    except psycopg.Error as e:
        logger.debug(f'error closing connection: {e}')
