"""
Errors raised while initializing a replica node.

FatalInitError and its subclasses abort the current run; the operator
re-invokes the initialization and the state machine resumes from the last
persisted node status. UnrecoverableNodeStatus means the node is in a state
forward progress cannot be resumed from, and the setup has to be redone.
"""


class InitReplicaError(Exception):
    pass


class FatalInitError(InitReplicaError):
    pass


class ConnectionFailed(FatalInitError):
    pass


class TransactionSetupFailed(FatalInitError):
    pass


class TableListFailed(FatalInitError):
    pass


class CopyFailed(FatalInitError):
    pass


class SlotCreationFailed(FatalInitError):
    pass


class ReplicationOriginFailed(FatalInitError):
    pass


class ToolNotFound(FatalInitError):
    pass


class ToolVersionMismatch(FatalInitError):
    pass


class ToolFailed(FatalInitError):
    pass


class UnsupportedNodeRole(FatalInitError):
    pass


class InvalidStatusTransition(FatalInitError):
    pass


class NodeNotFound(FatalInitError):
    pass


class UnrecoverableNodeStatus(InitReplicaError):
    pass


class InitReplicaCancelled(InitReplicaError):
    pass
