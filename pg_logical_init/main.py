#!/usr/bin/env python3

import argparse
import logging
import sys

from .config import Settings
from .errors import InitReplicaCancelled, InitReplicaError, UnrecoverableNodeStatus
from .init_replica import InitReplica
from .node import NodeConnection
from .node_store import PgNodeStore
from .pg_api import close_quietly, pg_connect
from .utils import GracefulKiller


EXIT_FAILED = 1
EXIT_UNRECOVERABLE = 2
EXIT_CANCELLED = 130


def set_logging_config(tags, log_level_str=None):
    """Configure logging to output only to stderr."""
    handlers = [logging.StreamHandler(sys.stderr)]

    log_levels = {
        'critical': logging.CRITICAL,
        'error': logging.ERROR,
        'warning': logging.WARNING,
        'info': logging.INFO,
        'debug': logging.DEBUG,
    }

    log_level = log_levels.get(log_level_str)
    if log_level is None:
        logging.warning(f'Unknown log level {log_level_str}, setting info')
        log_level = logging.INFO

    logging.basicConfig(
        level=log_level,
        format=f'[{tags} %(asctime)s %(levelname)8s] %(message)s',
        handlers=handlers,
    )


def load_node_connection(config: Settings, node_store):
    origin = node_store.get_node(config.origin_node)
    target = node_store.get_node(config.target_node)
    return NodeConnection(
        origin=origin,
        target=target,
        replication_sets=tuple(config.replication_sets),
    )


def run_init_replica(args, config: Settings):
    set_logging_config(f'initrepl {config.target_node}', log_level_str=config.log_level)
    killer = GracefulKiller()

    local_conn = pg_connect(config.local_dsn, config.init_application_name)
    try:
        node_store = PgNodeStore(local_conn, config.extension_name)
        init_replica = InitReplica(
            conn=load_node_connection(config, node_store),
            config=config,
            node_store=node_store,
            local_conn=local_conn,
            killer=killer,
        )
        init_replica.run()
    finally:
        close_quietly(local_conn)


def run_node_status(args, config: Settings):
    set_logging_config('nodestatus', log_level_str=config.log_level)

    local_conn = pg_connect(config.local_dsn, config.init_application_name)
    try:
        node_store = PgNodeStore(local_conn, config.extension_name)
        for node_name in (config.origin_node, config.target_node):
            node = node_store.get_node(node_name)
            print(f'{node.name}|{node.id}|{node.role.name}|{node.status.name}', flush=True)
    finally:
        close_quietly(local_conn)


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "mode", help="run mode",
        type=str,
        choices=["init_replica", "node_status"])
    parser.add_argument("--config", help="config file path", default='config.yaml', type=str)
    parser.add_argument("--log_level", help="override log level from config", type=str, default=None)
    args = parser.parse_args()

    config = Settings()
    config.load(args.config)
    if args.log_level:
        config.log_level = args.log_level
        config.validate_log_level()

    try:
        if args.mode == 'init_replica':
            run_init_replica(args, config)
        if args.mode == 'node_status':
            run_node_status(args, config)
    except UnrecoverableNodeStatus:
        logging.error('node initialization can not be resumed', exc_info=True)
        sys.exit(EXIT_UNRECOVERABLE)
    except InitReplicaCancelled:
        logging.warning('node initialization cancelled, re-run to resume')
        sys.exit(EXIT_CANCELLED)
    except InitReplicaError:
        logging.error('node initialization failed, re-run to resume', exc_info=True)
        sys.exit(EXIT_FAILED)


if __name__ == '__main__':
    main()
