import os
import re
import shutil
import subprocess
from logging import getLogger

from .errors import ToolFailed, ToolNotFound, ToolVersionMismatch
from .utils import mask_dsn

logger = getLogger(__name__)


SECTIONS = ('pre-data', 'post-data')

VERSION_RE = re.compile(r'^\S+\s+\S+\s+(\d+)\.(\d+)')


def parse_tool_version(output):
    """Parse `pg_dump (PostgreSQL) 16.2` style output into (16, 2)."""
    match = VERSION_RE.match(output.strip())
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def server_major_version(server_version_num):
    """Major version of a server_version_num, (9, 6) for 90624 and (16,) for 160002."""
    if server_version_num >= 100000:
        return (server_version_num // 10000,)
    return (server_version_num // 10000, server_version_num // 100 % 100)


def format_version(version):
    return '.'.join(str(part) for part in version)


class SchemaTransferTool:
    """Moves the database structure from origin to target through an archive."""

    def check_version(self):
        raise NotImplementedError()

    def dump(self, snapshot, archive_path, source_dsn):
        raise NotImplementedError()

    def restore(self, section, archive_path, target_dsn):
        raise NotImplementedError()


class PgSchemaTool(SchemaTransferTool):
    """pg_dump / pg_restore driver.

    The executables are looked up in bin_dir and must have the same major
    version as the server they work for, otherwise the archive could be
    silently incompatible.
    """

    def __init__(self, server_version_num, bin_dir=''):
        self.server_version_num = server_version_num
        self.bin_dir = bin_dir
        self.checked_tools = {}

    def find_tool_dir(self):
        if self.bin_dir:
            return self.bin_dir
        pg_dump = shutil.which('pg_dump')
        if pg_dump is None:
            raise ToolNotFound('could not find pg_dump on PATH, set pg_bin_dir')
        return os.path.dirname(os.path.realpath(pg_dump))

    def find_tool(self, name):
        """Locate the tool, check its version and return its path."""
        if name in self.checked_tools:
            return self.checked_tools[name]

        path = os.path.join(self.find_tool_dir(), name)
        if not os.path.isfile(path) or not os.access(path, os.X_OK):
            raise ToolNotFound(f'node init failed to find {name} in {os.path.dirname(path)}')

        try:
            result = subprocess.run([path, '-V'], capture_output=True, text=True)
        except OSError as e:
            raise ToolNotFound(f'could not execute {path}: {e}') from e
        version = parse_tool_version(result.stdout) if result.returncode == 0 else None
        if version is None:
            raise ToolVersionMismatch(
                f'could not get version of {path}, output: {result.stdout.strip()!r}'
            )

        expected = server_major_version(self.server_version_num)
        if version[:len(expected)] != expected:
            raise ToolVersionMismatch(
                f'node init found {name} with wrong major version {format_version(version)}, '
                f'expected {format_version(expected)}'
            )

        logger.debug(f'using {path} version {format_version(version)}')
        self.checked_tools[name] = path
        return path

    def check_version(self):
        self.find_tool('pg_dump')
        self.find_tool('pg_restore')

    def dump(self, snapshot, archive_path, source_dsn):
        pg_dump = self.find_tool('pg_dump')
        self.run_tool([
            pg_dump, f'--snapshot={snapshot}', '-F', 'c', '-f', archive_path, source_dsn,
        ], dsn=source_dsn)

    def restore(self, section, archive_path, target_dsn):
        if section not in SECTIONS:
            raise ValueError(f'unknown restore section {section}')
        pg_restore = self.find_tool('pg_restore')
        self.run_tool([
            pg_restore, f'--section={section}', '--exit-on-error', '-1',
            '-d', target_dsn, archive_path,
        ], dsn=target_dsn)

    def run_tool(self, cmd, dsn):
        printable = ' '.join(mask_dsn(arg) if arg == dsn else arg for arg in cmd)
        logger.info(f'running {printable}')
        try:
            result = subprocess.run(cmd, capture_output=True, text=True)
        except OSError as e:
            raise ToolFailed(f'could not execute command "{printable}": {e}') from e
        if result.returncode != 0:
            stderr_tail = '\n'.join(result.stderr.strip().splitlines()[-20:])
            raise ToolFailed(
                f'command "{printable}" failed with exit code {result.returncode}: {stderr_tail}'
            )
