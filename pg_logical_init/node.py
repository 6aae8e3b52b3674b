from dataclasses import dataclass, field

from .common import NodeRole, NodeStatus


@dataclass
class Node:
    id: int
    name: str
    dsn: str = ''
    role: NodeRole = NodeRole.SUBSCRIBER
    status: NodeStatus = NodeStatus.INIT


@dataclass(frozen=True)
class NodeConnection:
    origin: Node
    target: Node
    replication_sets: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class TableRef:
    schema_name: str
    table_name: str

    def __str__(self):
        return f'{self.schema_name}.{self.table_name}'


@dataclass(frozen=True)
class SlotInfo:
    slot_name: str
    lsn: str
    snapshot: str
    output_plugin: str = ''
