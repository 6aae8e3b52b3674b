"""
Replica Node Initialization Configuration Management

This module provides the configuration classes used by the node
initialization process: which nodes take part, which replication sets get
copied, where the dump/restore tools live and how the process logs.

Classes:
    ToolSettings: pg_dump / pg_restore location and intermediate archive
    Settings: Main configuration class loaded from a YAML file

Key Features:
    - YAML-based configuration loading
    - Environment override for the local connection string
    - Type validation and error handling
"""

import os
import tempfile
from dataclasses import dataclass

import yaml


LOCAL_DSN_ENV = 'PGLOGICAL_INIT_LOCAL_DSN'


def stype(obj):
    """Get the simple type name of an object.

    Example:
        >>> stype([1, 2, 3])
        'list'
    """
    return type(obj).__name__


def default_archive_path():
    return os.path.join(tempfile.gettempdir(), 'pglogical.dump')


@dataclass
class ToolSettings:
    """Location of the schema dump/restore executables.

    Attributes:
        pg_bin_dir: Directory holding pg_dump and pg_restore. When empty the
            directory of pg_dump found on PATH is used.
        archive_path: Custom-format archive written by pg_dump and read by
            both pg_restore runs. Shared by every run on this machine.
    """
    pg_bin_dir: str = ''
    archive_path: str = ''

    def __post_init__(self):
        if not self.archive_path:
            self.archive_path = default_archive_path()

    def validate(self):
        if not isinstance(self.pg_bin_dir, str):
            raise ValueError(f"pg_bin_dir should be string and not {stype(self.pg_bin_dir)}")

        if not isinstance(self.archive_path, str):
            raise ValueError(f"archive_path should be string and not {stype(self.archive_path)}")

        if self.pg_bin_dir and not os.path.isdir(self.pg_bin_dir):
            raise ValueError(f"pg_bin_dir {self.pg_bin_dir} is not a directory")


class Settings:
    DEFAULT_LOG_LEVEL = "info"
    DEFAULT_EXTENSION_NAME = "pglogical"
    DEFAULT_OUTPUT_PLUGIN = "pglogical_output"
    DEFAULT_APPLICATION_NAME = "pglogical"

    def __init__(self):
        self.local_dsn = ""
        self.origin_node = ""
        self.target_node = ""
        self.replication_sets: list[str] = ["default"]
        self.extension_name = Settings.DEFAULT_EXTENSION_NAME
        self.output_plugin = Settings.DEFAULT_OUTPUT_PLUGIN
        self.application_name = Settings.DEFAULT_APPLICATION_NAME
        self.tools = ToolSettings()
        self.settings_file = ""
        self.log_level = Settings.DEFAULT_LOG_LEVEL
        self.debug_log_level = False

    @property
    def init_application_name(self):
        return f"{self.application_name}_init"

    @property
    def snapshot_application_name(self):
        return f"{self.application_name}_snapshot"

    def load(self, settings_file):
        with open(settings_file, "r") as f:
            data = yaml.safe_load(f) or {}

        self.settings_file = settings_file
        self.local_dsn = data.pop("local_dsn", "")
        self.origin_node = data.pop("origin_node", "")
        self.target_node = data.pop("target_node", "")
        self.replication_sets = data.pop("replication_sets", ["default"])
        self.extension_name = data.pop("extension_name", Settings.DEFAULT_EXTENSION_NAME)
        self.output_plugin = data.pop("output_plugin", Settings.DEFAULT_OUTPUT_PLUGIN)
        self.application_name = data.pop("application_name", Settings.DEFAULT_APPLICATION_NAME)
        self.log_level = data.pop("log_level", Settings.DEFAULT_LOG_LEVEL)
        self.tools = ToolSettings(
            pg_bin_dir=data.pop("pg_bin_dir", ""),
            archive_path=data.pop("archive_path", ""),
        )

        if isinstance(self.replication_sets, str):
            self.replication_sets = [
                name.strip() for name in self.replication_sets.split(',') if name.strip()
            ]

        self.local_dsn = os.environ.get(LOCAL_DSN_ENV, self.local_dsn)

        if data:
            raise Exception(f"Unsupported config options: {list(data.keys())}")
        self.validate()

    def validate_log_level(self):
        if self.log_level not in ["critical", "error", "warning", "info", "debug"]:
            raise ValueError(f"wrong log level {self.log_level}")
        if self.log_level == "debug":
            self.debug_log_level = True

    def validate(self):
        for name in ("local_dsn", "origin_node", "target_node"):
            value = getattr(self, name)
            if not isinstance(value, str):
                raise ValueError(f"{name} should be string and not {stype(value)}")
            if not value:
                raise ValueError(f"{name} is required")

        if self.origin_node == self.target_node:
            raise ValueError("origin_node and target_node should be different nodes")

        if not isinstance(self.replication_sets, list):
            raise ValueError(
                f"replication_sets should be list and not {stype(self.replication_sets)}"
            )
        if not self.replication_sets:
            raise ValueError("at least one replication set should be selected")
        for set_name in self.replication_sets:
            if not isinstance(set_name, str):
                raise ValueError(f"replication set name should be string and not {stype(set_name)}")

        for name in ("extension_name", "output_plugin", "application_name"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"{name} should be non-empty string")

        self.tools.validate()
        self.validate_log_level()
