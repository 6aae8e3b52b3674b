from logging import getLogger

import psycopg
from psycopg import sql

from .common import NodeRole, NodeStatus
from .errors import FatalInitError, NodeNotFound
from .node import Node

logger = getLogger(__name__)


NODE_COLUMNS = 'node_id, node_name, node_dsn, node_role, node_status'


class NodeStore:
    """Access to the node catalog. Only reads nodes and updates their status."""

    def get_node(self, node_name) -> Node:
        raise NotImplementedError()

    def get_node_status(self, node_id) -> NodeStatus:
        raise NotImplementedError()

    def set_node_status(self, node_id, status: NodeStatus):
        raise NotImplementedError()

    def set_remote_node_status(self, conn, node_name, status: NodeStatus):
        raise NotImplementedError()

    def get_local_database_name(self) -> str:
        raise NotImplementedError()

    def get_server_version_num(self) -> int:
        raise NotImplementedError()


class PgNodeStore(NodeStore):
    """Node catalog kept in the <extension>.node table of the local database."""

    def __init__(self, local_conn, extension_name):
        self.conn = local_conn
        self.extension_name = extension_name

    def _node_table(self):
        return sql.Identifier(self.extension_name, 'node')

    def get_node(self, node_name):
        query = sql.SQL('SELECT {columns} FROM {table} WHERE node_name = %s').format(
            columns=sql.SQL(NODE_COLUMNS), table=self._node_table(),
        )
        try:
            row = self.conn.execute(query, (node_name,)).fetchone()
        except psycopg.Error as e:
            raise FatalInitError(f'could not read node {node_name}: {e}') from e
        if row is None:
            raise NodeNotFound(f'node {node_name} not found')
        node_id, name, dsn, role, status = row
        return Node(
            id=node_id,
            name=name,
            dsn=dsn,
            role=NodeRole.parse(role),
            status=NodeStatus.parse(status),
        )

    def get_node_status(self, node_id):
        query = sql.SQL('SELECT node_status FROM {table} WHERE node_id = %s').format(
            table=self._node_table(),
        )
        try:
            row = self.conn.execute(query, (node_id,)).fetchone()
        except psycopg.Error as e:
            raise FatalInitError(f'could not read status of node {node_id}: {e}') from e
        if row is None:
            raise NodeNotFound(f'node {node_id} not found')
        return NodeStatus.parse(row[0])

    def set_node_status(self, node_id, status):
        query = sql.SQL('UPDATE {table} SET node_status = %s WHERE node_id = %s').format(
            table=self._node_table(),
        )
        try:
            with self.conn.transaction():
                cursor = self.conn.execute(query, (status.value, node_id))
                if cursor.rowcount != 1:
                    raise NodeNotFound(f'node {node_id} not found')
        except psycopg.Error as e:
            raise FatalInitError(f'could not set status of node {node_id}: {e}') from e

    def set_remote_node_status(self, conn, node_name, status):
        query = sql.SQL('UPDATE {table} SET node_status = %s WHERE node_name = %s').format(
            table=self._node_table(),
        )
        try:
            with conn.transaction():
                cursor = conn.execute(query, (status.value, node_name))
                if cursor.rowcount != 1:
                    raise NodeNotFound(f'node {node_name} not found on remote node')
        except psycopg.Error as e:
            raise FatalInitError(f'could not set remote status of node {node_name}: {e}') from e

    def get_local_database_name(self):
        try:
            return self.conn.execute('SELECT current_database()').fetchone()[0]
        except psycopg.Error as e:
            raise FatalInitError(f'could not get local database name: {e}') from e

    def get_server_version_num(self):
        try:
            return int(self.conn.execute('SHOW server_version_num').fetchone()[0])
        except psycopg.Error as e:
            raise FatalInitError(f'could not get server version: {e}') from e
