from enum import Enum


class NodeStatus(Enum):
    INIT = 'i'
    SYNC_SCHEMA = 's'
    SLOTS = 'o'
    CATCHUP = 'c'
    CONNECT_BACK = 'b'
    READY = 'r'
    UNKNOWN = '?'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        for status in cls:
            if status.value == value or status.name.lower() == str(value).lower():
                return status
        return cls.UNKNOWN

    @property
    def rank(self):
        return STATUS_ORDER.index(self) if self in STATUS_ORDER else -1

    @property
    def is_persisted(self):
        return self in PERSISTED_STATUSES


# strict forward order of a node initialization
STATUS_ORDER = (
    NodeStatus.INIT,
    NodeStatus.SYNC_SCHEMA,
    NodeStatus.SLOTS,
    NodeStatus.CATCHUP,
    NodeStatus.CONNECT_BACK,
    NodeStatus.READY,
)

# SYNC_SCHEMA only lives in memory while INIT is running
PERSISTED_STATUSES = (
    NodeStatus.INIT,
    NodeStatus.SLOTS,
    NodeStatus.CATCHUP,
    NodeStatus.CONNECT_BACK,
    NodeStatus.READY,
)

RECOVERABLE_STATUSES = (
    NodeStatus.INIT,
    NodeStatus.SLOTS,
    NodeStatus.CATCHUP,
    NodeStatus.CONNECT_BACK,
)


class NodeRole(Enum):
    PROVIDER = 'p'
    SUBSCRIBER = 's'
    FORWARDER = 'f'

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        for role in cls:
            if role.value == value or role.name.lower() == str(value).lower():
                return role
        raise ValueError(f'unknown node role {value!r}')
