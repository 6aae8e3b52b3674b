import hashlib
import re
from logging import getLogger

import psycopg

from .errors import ReplicationOriginFailed, SlotCreationFailed
from .node import Node, SlotInfo

logger = getLogger(__name__)


NAMEDATALEN = 64
SLOT_NAME_PART_LEN = 16
INVALID_SLOT_CHARS_RE = re.compile(r'[^a-z0-9_]')


def shorten_hash(name, max_len):
    """Shorten name to max_len chars, keeping it unique with a hash suffix."""
    if len(name) <= max_len:
        return name
    digest = hashlib.md5(name.encode('utf-8')).hexdigest()[:8]
    return name[:max_len - 8] + digest


def gen_slot_name(dbname, origin: Node, target: Node):
    slot_name = 'pgl_{}_{}_{}'.format(
        shorten_hash(dbname, SLOT_NAME_PART_LEN),
        shorten_hash(origin.name, SLOT_NAME_PART_LEN),
        shorten_hash(target.name, SLOT_NAME_PART_LEN),
    )
    slot_name = slot_name[:NAMEDATALEN - 1]
    return INVALID_SLOT_CHARS_RE.sub('_', slot_name.lower())


def parse_lsn(lsn):
    hi, lo = lsn.split('/')
    return (int(hi, 16) << 32) | int(lo, 16)


def format_lsn(value):
    return f'{value >> 32:X}/{value & 0xFFFFFFFF:X}'


class SlotProvisioner:
    """Creates the replication slot on the origin and the matching origin locally."""

    def __init__(self, output_plugin):
        self.output_plugin = output_plugin

    def create_replication_slot(self, repl_conn, slot_name) -> SlotInfo:
        """Create a logical slot, returning its start LSN and exported snapshot.

        The snapshot stays valid only while repl_conn is open and idle.
        """
        query = f'CREATE_REPLICATION_SLOT "{slot_name}" LOGICAL {self.output_plugin}'
        # TODO: reuse a slot left over by a crashed INIT once the snapshot can be recovered
        try:
            cursor = repl_conn.execute(query)
            row = cursor.fetchone()
        except psycopg.Error as e:
            raise SlotCreationFailed(f'could not send replication command "{query}": {e}') from e
        if row is None:
            raise SlotCreationFailed(f'replication command "{query}" returned no rows')
        try:
            lsn = format_lsn(parse_lsn(row[1]))
        except (AttributeError, ValueError) as e:
            raise SlotCreationFailed(
                f'replication command "{query}" returned invalid LSN {row[1]!r}'
            ) from e

        slot = SlotInfo(
            slot_name=row[0],
            lsn=lsn,
            snapshot=row[2],
            output_plugin=row[3] if len(row) > 3 else self.output_plugin,
        )
        logger.info(f'created slot {slot.slot_name} at {slot.lsn} with snapshot {slot.snapshot}')
        return slot

    def ensure_replication_origin(self, local_conn, slot_name):
        """Get or create the replication origin named after the slot."""
        try:
            row = local_conn.execute(
                'SELECT pg_replication_origin_oid(%s)', (slot_name,),
            ).fetchone()
            origin_id = row[0] if row else None
            if origin_id is None:
                origin_id = local_conn.execute(
                    'SELECT pg_replication_origin_create(%s)', (slot_name,),
                ).fetchone()[0]
                logger.info(f'created replication origin {slot_name} ({origin_id})')
            else:
                logger.info(f'reusing replication origin {slot_name} ({origin_id})')
        except psycopg.Error as e:
            raise ReplicationOriginFailed(
                f'could not get or create replication origin {slot_name}: {e}'
            ) from e
        return origin_id

    def advance_replication_origin(self, local_conn, origin_name, lsn):
        """Mark everything up to lsn as already applied."""
        try:
            local_conn.execute(
                'SELECT pg_replication_origin_advance(%s, %s::pg_lsn)', (origin_name, lsn),
            )
        except psycopg.Error as e:
            raise ReplicationOriginFailed(
                f'could not advance replication origin {origin_name} to {lsn}: {e}'
            ) from e
        logger.info(f'replication origin {origin_name} advanced to {lsn}')

    def provision_origin(self, local_conn, slot: SlotInfo):
        """Create/advance the replication origin in a single local transaction."""
        with local_conn.transaction():
            origin_id = self.ensure_replication_origin(local_conn, slot.slot_name)
            self.advance_replication_origin(local_conn, slot.slot_name, slot.lsn)
        return origin_id

    def make_other_slots(self, target: Node):
        """Create slots on other publishing nodes."""
        logger.info(f'no other publishing nodes for {target.name}, multi-origin is not supported')
        return 0
