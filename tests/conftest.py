"""Shared test fixtures for pg-logical-init tests"""

import pytest

from pg_logical_init.common import NodeRole, NodeStatus
from pg_logical_init.config import Settings
from pg_logical_init.node import Node, NodeConnection
from tests.utils.fakes import (
    FakeConnection,
    FakeDataCopier,
    FakeNodeStore,
    FakeProvisioner,
    FakeSchemaTool,
)

ORIGIN_DSN = 'host=origin.local dbname=provider user=repl password=secret'
TARGET_DSN = 'host=target.local dbname=subscriber user=repl password=secret'


@pytest.fixture
def settings(tmp_path):
    cfg = Settings()
    cfg.local_dsn = TARGET_DSN
    cfg.origin_node = 'provider'
    cfg.target_node = 'subscriber'
    cfg.replication_sets = ['default']
    cfg.tools.archive_path = str(tmp_path / 'pglogical.dump')
    cfg.validate()
    return cfg


@pytest.fixture
def origin_node():
    return Node(id=1, name='provider', dsn=ORIGIN_DSN, role=NodeRole.PROVIDER, status=NodeStatus.READY)


@pytest.fixture
def target_node():
    return Node(id=2, name='subscriber', dsn=TARGET_DSN, role=NodeRole.SUBSCRIBER, status=NodeStatus.INIT)


@pytest.fixture
def node_connection(origin_node, target_node):
    return NodeConnection(origin=origin_node, target=target_node, replication_sets=('default',))


@pytest.fixture
def events():
    return []


@pytest.fixture
def node_store(origin_node, target_node, events):
    return FakeNodeStore([origin_node, target_node], events=events)


@pytest.fixture
def schema_tool(events):
    return FakeSchemaTool(events=events)


@pytest.fixture
def provisioner(events):
    return FakeProvisioner(events=events)


@pytest.fixture
def data_copier(events):
    return FakeDataCopier(events=events)


@pytest.fixture
def opened_connections(events):
    return []


@pytest.fixture
def fake_connect(opened_connections, events):
    def connect(dsn, application_name):
        conn = FakeConnection(name=f'{application_name}:{dsn.split()[0]}', events=events)
        opened_connections.append(conn)
        events.append(('connect', application_name, dsn))
        return conn
    return connect
