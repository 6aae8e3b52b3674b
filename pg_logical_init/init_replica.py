from logging import getLogger

from .common import (
    NodeRole,
    NodeStatus,
    PERSISTED_STATUSES,
    RECOVERABLE_STATUSES,
)
from .config import Settings
from .errors import InvalidStatusTransition, UnrecoverableNodeStatus, UnsupportedNodeRole
from .node import Node, NodeConnection
from .node_store import NodeStore
from .pg_api import close_quietly, pg_connect, pg_connect_replica
from .schema_tool import PgSchemaTool
from .slots import SlotProvisioner, gen_slot_name
from .table_copier import NodeDataCopier
from .utils import NoInterrupts

logger = getLogger(__name__)


class InitReplica:
    """Brings a target node from INIT to READY.

    Every step starts from the status persisted in the node catalog and
    persists the next status before the following step begins, so the
    process can be killed at any point and re-run. Work of the step that was
    interrupted is redone from its start.
    """

    def __init__(self, conn: NodeConnection, config: Settings, node_store: NodeStore,
                 local_conn=None, schema_tool=None, provisioner=None, data_copier=None,
                 killer=None, connect=pg_connect, connect_replica=pg_connect_replica):
        self.conn = conn
        self.config = config
        self.node_store = node_store
        self.local_conn = local_conn
        self.killer = killer or NoInterrupts()
        self.schema_tool = schema_tool
        self.provisioner = provisioner or SlotProvisioner(config.output_plugin)
        self.data_copier = data_copier or NodeDataCopier(
            extension_name=config.extension_name,
            application_name=config.init_application_name,
            killer=self.killer,
            connect=connect,
        )
        self.connect = connect
        self.connect_replica = connect_replica

    def get_schema_tool(self):
        if self.schema_tool is None:
            self.schema_tool = PgSchemaTool(
                server_version_num=self.node_store.get_server_version_num(),
                bin_dir=self.config.tools.pg_bin_dir,
            )
        return self.schema_tool

    def advance(self, node: Node, status: NodeStatus):
        """Persist the next status of the node, then switch to it in memory."""
        current = node.status
        if status.rank <= current.rank:
            raise InvalidStatusTransition(
                f'node {node.name} can not move back from {current.name} to {status.name}'
            )
        base = current if current.is_persisted else NodeStatus.INIT
        if base == NodeStatus.READY:
            raise InvalidStatusTransition(f'node {node.name} is already {NodeStatus.READY.name}')
        expected = PERSISTED_STATUSES[PERSISTED_STATUSES.index(base) + 1]
        if status != expected:
            raise InvalidStatusTransition(
                f'node {node.name} can not move from {current.name} to {status.name}, '
                f'next status is {expected.name}'
            )
        self.node_store.set_node_status(node.id, status)
        node.status = status
        logger.info(f'STATUS CHANGE: {current.name} -> {status.name}, node={node.name}')

    def enter_phase(self, node: Node, status: NodeStatus):
        logger.info(f'STATUS CHANGE: {node.status.name} -> {status.name} (not persisted), node={node.name}')
        node.status = status

    def check_target_role(self):
        target = self.conn.target
        if target.role != NodeRole.SUBSCRIBER:
            raise UnsupportedNodeRole(
                f'only subscriber node can be replication target, '
                f'node {target.name} is {target.role.name}'
            )

    def run(self):
        target = self.conn.target
        target.status = self.node_store.get_node_status(target.id)
        logger.info(f'node {target.name} status is {target.status.name}')

        if target.status not in RECOVERABLE_STATUSES:
            raise UnrecoverableNodeStatus(
                f'node {target.name} initialization failed during nonrecoverable step '
                f'(status {target.status.name}), please try the setup again'
            )

        if target.status == NodeStatus.INIT:
            self.init_node()
            self.advance(target, NodeStatus.SLOTS)

        if target.status == NodeStatus.SLOTS:
            self.provisioner.make_other_slots(target)
            self.advance(target, NodeStatus.CATCHUP)

        if target.status == NodeStatus.CATCHUP:
            self.check_target_role()
            # subscriber needs no catchup with other nodes
            self.advance(target, NodeStatus.CONNECT_BACK)

        if target.status == NodeStatus.CONNECT_BACK:
            self.check_target_role()
            self.advance(target, NodeStatus.READY)
            self.connect_back()
            logger.info('finished init_replica, ready to enter normal replication')

    def init_node(self):
        origin = self.conn.origin
        target = self.conn.target
        logger.info(f'initializing node {target.name} from {origin.name}')

        schema_tool = self.get_schema_tool()
        schema_tool.check_version()

        slot_name = gen_slot_name(self.node_store.get_local_database_name(), origin, target)

        # the exported snapshot lives as long as this connection stays open
        repl_conn = self.connect_replica(origin.dsn, self.config.snapshot_application_name)
        try:
            slot = self.provisioner.create_replication_slot(repl_conn, slot_name)
            self.provisioner.provision_origin(self.local_conn, slot)

            self.enter_phase(target, NodeStatus.SYNC_SCHEMA)
            logger.info('synchronizing schemas')
            archive_path = self.config.tools.archive_path
            if self.config.debug_log_level:
                logger.debug(f'dumping with snapshot {slot.snapshot} into {archive_path}')
            schema_tool.dump(slot.snapshot, archive_path, origin.dsn)
            schema_tool.restore('pre-data', archive_path, target.dsn)

            self.killer.check_for_interrupts()
            logger.info('copying data')
            self.data_copier.copy_node_data(self.conn, slot.snapshot)

            schema_tool.restore('post-data', archive_path, target.dsn)
        finally:
            close_quietly(repl_conn)
        return slot

    def connect_back(self):
        origin_conn = self.connect(self.conn.origin.dsn, self.config.init_application_name)
        try:
            self.node_store.set_remote_node_status(
                origin_conn, self.conn.target.name, NodeStatus.READY,
            )
        finally:
            close_quietly(origin_conn)
        logger.info(f'origin {self.conn.origin.name} knows {self.conn.target.name} is ready')
