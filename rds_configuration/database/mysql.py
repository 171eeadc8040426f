"""MySQL (RDS/Aurora) connection management for the configuration engine.

Uses PyMySQL. One live connection per client configuration is opened lazily,
verified with a ping and then shared by every reader and writer in the process.
"""

import asyncio
import math
import os
import ssl
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pymysql
from pymysql.connections import Connection
from pymysql.cursors import DictCursor

from rds_configuration.domain.errors import ConfigurationError, ConnectionFailedError
from rds_configuration.logger.logger import get_logger
from rds_configuration.logger.types import Category, param

AUTH_NATIVE = "native"
AUTH_CLEARTEXT = "cleartext"
AUTH_TYPES = (AUTH_NATIVE, AUTH_CLEARTEXT)

TLS_TRUE = "true"
TLS_FALSE = "false"
TLS_SKIP_VERIFY = "skip-verify"
TLS_MODES = (TLS_TRUE, TLS_FALSE, TLS_SKIP_VERIFY)

DEFAULT_PORT = 3306
DEFAULT_CONNECT_TIMEOUT = 30

INITIAL_RETRY_DELAY = 0.5
MAX_RETRY_DELAY = 10.0

PASSWORD_SECRET_FILE = "/run/secrets/mysql_password"


class _ClearPasswordRefused:
    """PyMySQL auth plugin handler that rejects mysql_clear_password switches."""

    def __init__(self, con: Connection) -> None:
        self.con = con

    def authenticate(self, pkt: Any) -> Any:  # noqa: ANN401
        raise pymysql.err.OperationalError(
            2059,
            "Server requested mysql_clear_password but authentication_type is "
            f"'{AUTH_NATIVE}'; set it to '{AUTH_CLEARTEXT}' to allow it",
        )


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    try:
        return int(raw.strip())
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid {name} value",
            f"{name} must be an integer, got {raw!r}.",
        ) from e


def _read_password() -> str:
    """Read password from Docker secret or env."""
    if os.path.exists(PASSWORD_SECRET_FILE):
        with open(PASSWORD_SECRET_FILE) as f:
            return f.read().strip()
    return os.getenv("MYSQL_PASSWORD", "")


@dataclass(frozen=True)
class MySQLConfig:
    """Immutable client configuration for one RDS instance."""

    endpoint: str
    username: str
    password: str = field(default="", repr=False)
    port: int | None = None
    tls: str | None = None
    authentication_type: str = AUTH_NATIVE
    connect_timeout: int = DEFAULT_CONNECT_TIMEOUT

    def __post_init__(self) -> None:
        if not self.endpoint or not self.endpoint.strip():
            raise ConfigurationError(
                "Missing endpoint configuration",
                "MySQL endpoint must be specified either in client configuration "
                "or MYSQL_ENDPOINT environment variable.",
            )
        if not self.username or not self.username.strip():
            raise ConfigurationError(
                "Missing username configuration",
                "MySQL username must be specified either in client configuration "
                "or MYSQL_USERNAME environment variable.",
            )
        if self.port is not None and not 1 <= self.port <= 65535:
            raise ConfigurationError(
                "Invalid port configuration",
                f"port must be a valid TCP port (1-65535), got {self.port}.",
            )
        if self.tls is not None and self.tls not in TLS_MODES:
            raise ConfigurationError(
                "Invalid tls configuration",
                f"tls must be one of {', '.join(TLS_MODES)}, got {self.tls!r}.",
            )
        if self.authentication_type not in AUTH_TYPES:
            raise ConfigurationError(
                "Invalid authentication_type configuration",
                f"authentication_type must be one of {', '.join(AUTH_TYPES)}, "
                f"got {self.authentication_type!r}.",
            )
        if self.connect_timeout < 0:
            raise ConfigurationError(
                "Invalid connect_timeout configuration",
                f"connect_timeout must be at least 0, got {self.connect_timeout}.",
            )

    @classmethod
    def from_env(
        cls,
        endpoint: str | None = None,
        port: int | None = None,
        username: str | None = None,
        password: str | None = None,
        tls: str | None = None,
        authentication_type: str | None = None,
        connect_timeout: int | None = None,
    ) -> "MySQLConfig":
        """
        Build a config, filling unset options from the environment.

        Args:
            endpoint: Hostname or IP, falls back to MYSQL_ENDPOINT
            port: TCP port, falls back to MYSQL_PORT
            username: falls back to MYSQL_USERNAME
            password: falls back to Docker secret, then MYSQL_PASSWORD
            tls: true/false/skip-verify, falls back to MYSQL_TLS_CONFIG
            authentication_type: native/cleartext, falls back to MYSQL_AUTHENTICATION_TYPE
            connect_timeout: seconds, falls back to MYSQL_CONNECT_TIMEOUT, then 30

        Raises:
            ConfigurationError: required option missing or invalid
        """
        if connect_timeout is None:
            connect_timeout = _env_int("MYSQL_CONNECT_TIMEOUT")
        if port is None:
            port = _env_int("MYSQL_PORT")

        return cls(
            endpoint=endpoint or os.getenv("MYSQL_ENDPOINT", ""),
            username=username or os.getenv("MYSQL_USERNAME", ""),
            password=password if password is not None else _read_password(),
            # 0 в MYSQL_PORT трактуем как "порт драйвера по умолчанию"
            port=port or None,
            tls=tls or os.getenv("MYSQL_TLS_CONFIG") or None,
            authentication_type=(
                authentication_type or os.getenv("MYSQL_AUTHENTICATION_TYPE") or AUTH_NATIVE
            ),
            connect_timeout=(
                connect_timeout if connect_timeout is not None else DEFAULT_CONNECT_TIMEOUT
            ),
        )

    @property
    def address(self) -> str:
        return f"{self.endpoint}:{self.port or DEFAULT_PORT}"

    def ssl_kwargs(self) -> dict[str, Any]:
        """TLS options for pymysql.connect; empty means driver default."""
        if self.tls == TLS_FALSE:
            return {"ssl_disabled": True}
        if self.tls == TLS_TRUE:
            return {"ssl": ssl.create_default_context()}
        if self.tls == TLS_SKIP_VERIFY:
            ctx = ssl.create_default_context()
            ctx.check_hostname = False
            ctx.verify_mode = ssl.CERT_NONE
            return {"ssl": ctx}
        return {}

    def to_dict(self, connect_timeout: int | None = None) -> dict[str, Any]:
        """Convert config to PyMySQL connection kwargs."""
        kwargs: dict[str, Any] = {
            "host": self.endpoint,
            "port": self.port or DEFAULT_PORT,
            "user": self.username,
            "password": self.password,
            "charset": "utf8mb4",
            "cursorclass": DictCursor,
            "autocommit": True,
        }
        if connect_timeout is not None:
            kwargs["connect_timeout"] = connect_timeout
        if self.authentication_type == AUTH_NATIVE:
            kwargs["auth_plugin_map"] = {"mysql_clear_password": _ClearPasswordRefused}
        kwargs.update(self.ssl_kwargs())
        return kwargs


class MySQLHandle:
    """A single live connection shared by readers and writers.

    PyMySQL connections are not thread-safe, so every statement runs in a
    worker thread while holding the handle's lock.
    """

    def __init__(self, connection: Connection) -> None:
        self._connection = connection
        self._lock = threading.Lock()

    @property
    def connection(self) -> Connection:
        return self._connection

    def _ensure_connected(self) -> Connection:
        """Ping the connection, reconnecting if the server dropped it."""
        self._connection.ping(reconnect=True)
        return self._connection

    def _fetch_all(self, query: str, params: tuple[Any, ...] | None) -> list[dict[str, Any]]:
        with self._lock:
            with self._ensure_connected().cursor() as cursor:
                cursor.execute(query, params)
                return list(cursor.fetchall())

    def _execute(self, query: str, params: tuple[Any, ...] | None) -> int:
        with self._lock:
            with self._ensure_connected().cursor() as cursor:
                cursor.execute(query, params)
                return cursor.rowcount

    async def fetch_all(
        self, query: str, params: tuple[Any, ...] | None = None
    ) -> list[dict[str, Any]]:
        """
        Execute query and fetch all results.

        Args:
            query: SQL query
            params: Query parameters

        Returns:
            List of dicts with column names as keys
        """
        return await asyncio.to_thread(self._fetch_all, query, params)

    async def execute(self, query: str, params: tuple[Any, ...] | None = None) -> int:
        """Execute query without returning results; returns affected rows."""
        return await asyncio.to_thread(self._execute, query, params)

    def close(self) -> None:
        with self._lock:
            try:
                self._connection.close()
            except pymysql.Error:
                pass


class ConnectionManager:
    """Lazily opens and caches the one MySQLHandle for a MySQLConfig.

    The first acquire() retries connect+ping with exponential backoff until
    the config's connect_timeout elapses. Concurrent first callers wait on the
    same initialization and receive the same handle.
    """

    def __init__(
        self,
        config: MySQLConfig,
        connect: Callable[..., Connection] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._connect = connect or pymysql.connect
        self._clock = clock
        self._sleep = sleep
        self._handle: MySQLHandle | None = None
        self._lock = asyncio.Lock()
        self.logger = get_logger().with_category(Category.CONNECTION)

    @property
    def handle(self) -> MySQLHandle | None:
        return self._handle

    async def acquire(self) -> MySQLHandle:
        """
        Return the shared handle, connecting on first use.

        Raises:
            ConnectionFailedError: connect_timeout elapsed without a verified connection
        """
        if self._handle is not None:
            return self._handle

        async with self._lock:
            if self._handle is None:
                self._handle = await self._connect_with_retry()
            return self._handle

    def _open(self, attempt_timeout: int | None) -> MySQLHandle:
        connection = self._connect(**self.config.to_dict(connect_timeout=attempt_timeout))
        try:
            connection.ping(reconnect=False)
        except Exception:
            try:
                connection.close()
            except pymysql.Error:
                pass
            raise
        return MySQLHandle(connection)

    @staticmethod
    def _close_abandoned(future: "asyncio.Future[MySQLHandle]") -> None:
        """Close a handle whose opening finished after the caller was cancelled."""
        if future.cancelled() or future.exception() is not None:
            return
        future.result().close()

    async def _open_attempt(self, attempt_timeout: int | None) -> MySQLHandle:
        # Поток с connect() нельзя прервать, поэтому ждём его через shield
        future = asyncio.ensure_future(asyncio.to_thread(self._open, attempt_timeout))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            future.add_done_callback(self._close_abandoned)
            raise

    async def _connect_with_retry(self) -> MySQLHandle:
        started = self._clock()
        deadline = started + self.config.connect_timeout
        delay = INITIAL_RETRY_DELAY
        attempt = 0
        last_error: Exception | None = None

        while True:
            attempt += 1
            remaining = deadline - self._clock()
            attempt_timeout = None
            if self.config.connect_timeout > 0:
                attempt_timeout = max(1, math.ceil(remaining))

            try:
                handle = await self._open_attempt(attempt_timeout)
            except Exception as e:
                last_error = e
            else:
                self.logger.info(
                    "Connected to RDS instance",
                    param("address", self.config.address),
                    param("user", self.config.username),
                    param("attempt", attempt),
                    param("elapsed_s", round(self._clock() - started, 3)),
                )
                return handle

            remaining = deadline - self._clock()
            if remaining <= 0:
                break

            wait = min(delay, remaining)
            self.logger.warn(
                f"RDS connection attempt {attempt} failed, retrying...",
                param("address", self.config.address),
                param("delay", wait),
                param("error", str(last_error)),
            )
            await self._sleep(wait)
            delay = min(delay * 2, MAX_RETRY_DELAY)

        self.logger.error(
            f"Failed to connect to RDS instance after {attempt} attempts",
            last_error,
            param("address", self.config.address),
            param("connect_timeout", self.config.connect_timeout),
        )
        raise ConnectionFailedError(
            f"Failed to connect to {self.config.address}",
            f"No verified connection within {self.config.connect_timeout}s "
            f"({attempt} attempts). Last error: {last_error}",
        ) from last_error

    def close(self) -> None:
        """Close the cached handle, if any. Only used on process shutdown."""
        if self._handle is not None:
            self._handle.close()
            self._handle = None
