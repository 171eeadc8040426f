"""Pytest configuration and shared fixtures."""

from typing import Any

import pymysql
import pytest

from rds_configuration.database.mysql import ConnectionManager, MySQLConfig
from rds_configuration.logger.logger import init_logger
from rds_configuration.logger.types import Level
from rds_configuration.repository.configuration_repository import (
    SET_CONFIGURATION,
    SHOW_CONFIGURATION,
)

DEFAULT_SETTINGS: dict[str, tuple[Any, str]] = {
    "binlog retention hours": (None, "binlog retention hours specifies the duration in hours before binary logs are automatically deleted."),
    "max_connections": ("50", "Maximum number of simultaneous client connections."),
    "source delay": ("0", "source delay specifies replication delay in seconds between current instance and its master."),
    "target delay": (0, "target delay specifies replication delay in seconds between current instance and its future read-replica."),
}


class FakeCursor:
    """Minimal DictCursor stand-in understanding the two RDS procedures."""

    def __init__(self, connection: "FakeConnection") -> None:
        self.connection = connection
        self._rows: list[dict[str, Any]] = []
        self.rowcount = 0

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def execute(self, query: str, params: tuple[Any, ...] | None = None) -> int:
        conn = self.connection
        conn.statements.append((query, params))
        if conn.fail_queries:
            raise pymysql.err.OperationalError(2013, "Lost connection to MySQL server during query")

        if query == SHOW_CONFIGURATION:
            if conn.raw_rows is not None:
                self._rows = list(conn.raw_rows)
            else:
                self._rows = [
                    {"name": name, "value": value, "description": description}
                    for name, (value, description) in conn.settings.items()
                ]
            self.rowcount = len(self._rows)
            return self.rowcount

        if query == SET_CONFIGURATION:
            name, value = params
            if name in conn.fail_on_set:
                raise pymysql.err.InternalError(1644, f"Invalid value for {name}")
            if name not in conn.settings:
                raise pymysql.err.InternalError(1644, "Invalid configuration name")
            _, description = conn.settings[name]
            conn.settings[name] = (str(value), description)
            self._rows = []
            self.rowcount = 0
            return 0

        raise pymysql.err.ProgrammingError(1064, f"Unexpected query {query!r}")

    def fetchall(self) -> list[dict[str, Any]]:
        return self._rows

    def close(self) -> None:
        pass


class FakeConnection:
    """In-memory RDS instance: name -> (value, description)."""

    def __init__(self, settings: dict[str, tuple[Any, str]] | None = None) -> None:
        self.settings = dict(DEFAULT_SETTINGS if settings is None else settings)
        self.statements: list[tuple[str, tuple[Any, ...] | None]] = []
        self.fail_queries = False
        self.fail_on_set: set[str] = set()
        self.raw_rows: list[dict[str, Any]] | None = None
        self.closed = False
        self.can_reconnect = True
        self.pings: list[bool] = []
        self.reconnects = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def ping(self, reconnect: bool = False) -> None:
        self.pings.append(reconnect)
        if not self.closed:
            return
        if reconnect and self.can_reconnect:
            self.closed = False
            self.reconnects += 1
            return
        raise pymysql.err.OperationalError(2006, "MySQL server has gone away")

    def close(self) -> None:
        self.closed = True

    def set_calls(self) -> list[tuple[Any, ...] | None]:
        return [params for query, params in self.statements if query == SET_CONFIGURATION]


@pytest.fixture(autouse=True)
def logger():
    """Global logger; components look it up at construction time."""
    return init_logger("rds-configuration-test", "test", level=Level.DEBUG)


@pytest.fixture
def mysql_config() -> MySQLConfig:
    return MySQLConfig(
        endpoint="db.example.internal",
        username="admin",
        password="secret",
        connect_timeout=5,
    )


@pytest.fixture
def fake_connection() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def connections(mysql_config: MySQLConfig, fake_connection: FakeConnection) -> ConnectionManager:
    return ConnectionManager(mysql_config, connect=lambda **kwargs: fake_connection)
