import signal
from logging import getLogger

import psycopg
from psycopg.conninfo import conninfo_to_dict, make_conninfo

from .errors import InitReplicaCancelled

logger = getLogger(__name__)


class GracefulKiller:
    """Turns SIGINT/SIGTERM into a flag polled by long running loops."""

    kill_now = False

    def __init__(self, install_handlers=True):
        if install_handlers:
            signal.signal(signal.SIGINT, self.exit_gracefully)
            signal.signal(signal.SIGTERM, self.exit_gracefully)

    def exit_gracefully(self, signum, frame):
        logger.warning(f'received signal {signum}, cancelling initialization')
        self.kill_now = True

    def check_for_interrupts(self):
        if self.kill_now:
            raise InitReplicaCancelled('node initialization cancelled by user request')


class NoInterrupts:
    kill_now = False

    def check_for_interrupts(self):
        pass


def mask_dsn(dsn):
    """Return the connection string without its password, for error messages."""
    try:
        params = conninfo_to_dict(dsn)
    except psycopg.ProgrammingError:
        return '<unparseable dsn>'
    if 'password' in params:
        params['password'] = '********'
    return make_conninfo(**params)
