"""
Crossbar Fixture Configuration Management

This module provides the configuration values handed to every part of the
fixture: where the router listens, how it is launched and how long the
fixture waits for it.

Classes:
    ConnectionConfig: WebSocket endpoint of the managed router
    ProcessSettings: Executable, node directory and readiness/stop budgets
    Settings: Main configuration class that orchestrates all settings

Key Features:
    - YAML-based configuration loading
    - Environment variable overrides (CROSSBAR_HOST, CROSSBAR_PORT, ...)
    - Type validation and error handling
    - Immutable sections passed explicitly into each component
"""

import os
from dataclasses import dataclass, field, fields, replace

import yaml


DEFAULT_EXECUTABLE = "/usr/local/bin/crossbar"
DEFAULT_CBDIR = ".crossbar"
DEFAULT_REALM = "realm1"


def stype(obj):
    """Get the simple type name of an object.

    Example:
        >>> stype([1, 2, 3])
        'list'
    """
    return type(obj).__name__


def load_section(section_cls, name, data):
    """Build a config section from its YAML mapping, rejecting unknown keys."""
    data = data or {}
    if not isinstance(data, dict):
        raise ValueError(f"{name} section should be mapping and not {stype(data)}")
    unknown = [key for key in data if key not in {f.name for f in fields(section_cls)}]
    if unknown:
        raise Exception(f"Unsupported config options: {[f'{name}.{key}' for key in unknown]}")
    return section_cls(**data)


@dataclass(frozen=True)
class ConnectionConfig:
    """WebSocket endpoint of the managed router.

    Attributes:
        host: Router hostname (default: localhost)
        port: Router WebSocket transport port (default: 8080)
        path: Resource path of the WebSocket transport (default: /ws)

    Example:
        >>> ConnectionConfig().uri
        'ws://localhost:8080/ws'
    """
    host: str = "localhost"
    port: int = 8080
    path: str = "/ws"

    def validate(self):
        if not isinstance(self.host, str) or not self.host:
            raise ValueError(f"connection host should be non-empty string and not {stype(self.host)}")

        if not isinstance(self.port, int) or isinstance(self.port, bool):
            raise ValueError(f"connection port should be int and not {stype(self.port)}")

        if not 0 <= self.port <= 65535:
            raise ValueError(f"connection port should be in range 0-65535, got {self.port}")

        if not isinstance(self.path, str):
            raise ValueError(f"connection path should be string and not {stype(self.path)}")

    @property
    def uri(self):
        return get_uri(self)

    def as_dict(self):
        return {"host": self.host, "port": self.port, "path": self.path}


def get_uri(config: ConnectionConfig) -> str:
    return f"ws://{config.host}:{config.port}{config.path}"


@dataclass(frozen=True)
class ProcessSettings:
    executable: str = DEFAULT_EXECUTABLE
    cbdir: str = DEFAULT_CBDIR
    readiness_interval_ms: int = 250
    readiness_retries: int = 40
    stop_timeout_ms: int = 1000
    shutdown_timeout_ms: int = 10000
    # Managed process writes 2-byte length-prefixed frames instead of lines
    framed: bool = False

    @property
    def arguments(self):
        return ["--cbdir", self.cbdir]

    def validate(self):
        if not isinstance(self.executable, str) or not self.executable:
            raise ValueError(f"process executable should be non-empty string and not {stype(self.executable)}")

        if not isinstance(self.cbdir, str):
            raise ValueError(f"process cbdir should be string and not {stype(self.cbdir)}")

        if not isinstance(self.readiness_interval_ms, int) or self.readiness_interval_ms <= 0:
            raise ValueError("process readiness_interval_ms should be positive integer")

        if not isinstance(self.readiness_retries, int) or self.readiness_retries < 0:
            raise ValueError("process readiness_retries should be non-negative integer")

        if not isinstance(self.stop_timeout_ms, int) or self.stop_timeout_ms <= 0:
            raise ValueError("process stop_timeout_ms should be positive integer")

        if not isinstance(self.shutdown_timeout_ms, int) or self.shutdown_timeout_ms <= 0:
            raise ValueError("process shutdown_timeout_ms should be positive integer")

        if not isinstance(self.framed, bool):
            raise ValueError(f"process framed should be bool and not {stype(self.framed)}")


@dataclass(frozen=True)
class Settings:
    DEFAULT_LOG_LEVEL = "info"

    connection: ConnectionConfig = field(default_factory=ConnectionConfig)
    process: ProcessSettings = field(default_factory=ProcessSettings)
    realm: str = DEFAULT_REALM
    log_level: str = DEFAULT_LOG_LEVEL
    settings_file: str = ""

    @classmethod
    def load(cls, settings_file=None, environ=None):
        """Build settings from an optional YAML file, then apply env overrides."""
        data = {}
        if settings_file:
            with open(settings_file, "r") as f:
                data = yaml.safe_load(f.read()) or {}
            if not isinstance(data, dict):
                raise ValueError(f"config root should be mapping and not {stype(data)}")

        connection = load_section(ConnectionConfig, "connection", data.pop("connection", None))
        process = load_section(ProcessSettings, "process", data.pop("process", None))
        realm = data.pop("realm", DEFAULT_REALM)
        log_level = data.pop("log_level", Settings.DEFAULT_LOG_LEVEL)

        if data:
            raise Exception(f"Unsupported config options: {list(data.keys())}")

        settings = cls(
            connection=connection,
            process=process,
            realm=realm,
            log_level=log_level,
            settings_file=settings_file or "",
        )
        settings = settings.with_env_overrides(os.environ if environ is None else environ)
        settings.validate()
        return settings

    def with_env_overrides(self, environ):
        connection_overrides = {}
        if environ.get("CROSSBAR_HOST"):
            connection_overrides["host"] = environ["CROSSBAR_HOST"]
        if environ.get("CROSSBAR_PORT"):
            try:
                connection_overrides["port"] = int(environ["CROSSBAR_PORT"])
            except ValueError:
                raise ValueError(f"CROSSBAR_PORT should be integer, got {environ['CROSSBAR_PORT']!r}")
        if environ.get("CROSSBAR_PATH"):
            connection_overrides["path"] = environ["CROSSBAR_PATH"]

        process_overrides = {}
        if environ.get("CROSSBAR_EXECUTABLE"):
            process_overrides["executable"] = environ["CROSSBAR_EXECUTABLE"]
        if environ.get("CROSSBAR_CBDIR"):
            process_overrides["cbdir"] = environ["CROSSBAR_CBDIR"]

        return replace(
            self,
            connection=replace(self.connection, **connection_overrides),
            process=replace(self.process, **process_overrides),
            realm=environ.get("CROSSBAR_REALM") or self.realm,
        )

    @property
    def uri(self):
        return self.connection.uri

    def validate_log_level(self):
        if self.log_level not in ["critical", "error", "warning", "info", "debug"]:
            raise ValueError(f"wrong log level {self.log_level}")

    def validate(self):
        self.connection.validate()
        self.process.validate()
        self.validate_log_level()
        if not isinstance(self.realm, str) or not self.realm:
            raise ValueError(f"realm should be non-empty string and not {stype(self.realm)}")
