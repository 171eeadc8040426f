"""Unit tests for MySQLConfig and ConnectionManager."""

import asyncio
import ssl
import threading

import pymysql
import pytest

from rds_configuration.database.mysql import (
    DEFAULT_PORT,
    ConnectionManager,
    MySQLConfig,
    MySQLHandle,
)
from rds_configuration.domain.errors import ConfigurationError, ConnectionFailedError

from conftest import FakeConnection

MYSQL_ENV = (
    "MYSQL_ENDPOINT",
    "MYSQL_PORT",
    "MYSQL_USERNAME",
    "MYSQL_PASSWORD",
    "MYSQL_TLS_CONFIG",
    "MYSQL_AUTHENTICATION_TYPE",
    "MYSQL_CONNECT_TIMEOUT",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in MYSQL_ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


def test_from_env_reads_environment(clean_env):
    clean_env.setenv("MYSQL_ENDPOINT", "rds.example.com")
    clean_env.setenv("MYSQL_USERNAME", "admin")
    clean_env.setenv("MYSQL_PASSWORD", "pw")
    clean_env.setenv("MYSQL_PORT", "3307")
    clean_env.setenv("MYSQL_TLS_CONFIG", "skip-verify")
    clean_env.setenv("MYSQL_CONNECT_TIMEOUT", "12")

    config = MySQLConfig.from_env()

    assert config.endpoint == "rds.example.com"
    assert config.port == 3307
    assert config.password == "pw"
    assert config.tls == "skip-verify"
    assert config.authentication_type == "native"
    assert config.connect_timeout == 12
    assert "pw" not in repr(config)


def test_explicit_options_override_environment(clean_env):
    clean_env.setenv("MYSQL_ENDPOINT", "from-env")
    clean_env.setenv("MYSQL_USERNAME", "env-user")

    config = MySQLConfig.from_env(endpoint="explicit", username="me", password="")

    assert config.endpoint == "explicit"
    assert config.username == "me"
    assert config.port is None
    assert config.connect_timeout == 30


def test_missing_endpoint_is_a_configuration_error(clean_env):
    clean_env.setenv("MYSQL_USERNAME", "admin")

    with pytest.raises(ConfigurationError) as exc:
        MySQLConfig.from_env(password="")

    assert exc.value.summary == "Missing endpoint configuration"
    assert "MYSQL_ENDPOINT" in exc.value.detail


def test_blank_username_is_a_configuration_error(clean_env):
    with pytest.raises(ConfigurationError) as exc:
        MySQLConfig.from_env(endpoint="db", username="   ", password="")

    assert exc.value.summary == "Missing username configuration"


@pytest.mark.parametrize(
    "overrides",
    [
        {"port": 70000},
        {"tls": "maybe"},
        {"authentication_type": "kerberos"},
        {"connect_timeout": -1},
    ],
)
def test_invalid_options_are_rejected(overrides):
    with pytest.raises(ConfigurationError):
        MySQLConfig(endpoint="db", username="admin", **overrides)


def test_non_integer_port_env_is_rejected(clean_env):
    clean_env.setenv("MYSQL_PORT", "abc")

    with pytest.raises(ConfigurationError):
        MySQLConfig.from_env(endpoint="db", username="admin", password="")


def test_connection_kwargs_tls_and_auth():
    native = MySQLConfig(endpoint="db", username="admin").to_dict(connect_timeout=7)
    assert native["port"] == DEFAULT_PORT
    assert native["connect_timeout"] == 7
    assert native["autocommit"] is True
    assert "mysql_clear_password" in native["auth_plugin_map"]
    assert "ssl" not in native and "ssl_disabled" not in native

    cleartext = MySQLConfig(
        endpoint="db", username="admin", authentication_type="cleartext", tls="false"
    ).to_dict()
    assert "auth_plugin_map" not in cleartext
    assert cleartext["ssl_disabled"] is True

    verified = MySQLConfig(endpoint="db", username="admin", tls="true").to_dict()
    assert verified["ssl"].verify_mode == ssl.CERT_REQUIRED

    skip = MySQLConfig(endpoint="db", username="admin", tls="skip-verify").to_dict()
    assert skip["ssl"].verify_mode == ssl.CERT_NONE
    assert skip["ssl"].check_hostname is False


async def test_acquire_caches_the_handle(mysql_config):
    calls = []

    def connect(**kwargs):
        calls.append(kwargs)
        return FakeConnection()

    manager = ConnectionManager(mysql_config, connect=connect)

    first = await manager.acquire()
    second = await manager.acquire()

    assert first is second
    assert isinstance(first, MySQLHandle)
    assert len(calls) == 1
    assert calls[0]["host"] == "db.example.internal"


async def test_concurrent_acquire_connects_once(mysql_config):
    calls = []

    def connect(**kwargs):
        calls.append(kwargs)
        return FakeConnection()

    manager = ConnectionManager(mysql_config, connect=connect)

    handles = await asyncio.gather(*(manager.acquire() for _ in range(10)))

    assert len(calls) == 1
    assert all(handle is handles[0] for handle in handles)


@pytest.mark.parametrize("available_at, succeeds", [(29.0, True), (31.0, False)])
async def test_acquire_retries_until_connect_timeout(available_at, succeeds):
    clock = FakeClock()
    attempts = []

    def connect(**kwargs):
        attempts.append(clock.now)
        if clock.now < available_at:
            raise pymysql.err.OperationalError(2003, "Can't connect to MySQL server")
        return FakeConnection()

    config = MySQLConfig(endpoint="db", username="admin", connect_timeout=30)
    manager = ConnectionManager(config, connect=connect, clock=clock, sleep=clock.sleep)

    if succeeds:
        handle = await manager.acquire()
        assert manager.handle is handle
    else:
        with pytest.raises(ConnectionFailedError) as exc:
            await manager.acquire()
        assert isinstance(exc.value.__cause__, pymysql.err.OperationalError)
        assert "Can't connect" in exc.value.detail
        assert manager.handle is None

    assert len(attempts) > 1
    assert clock.now <= 30.0
    assert attempts == sorted(attempts)


async def test_zero_timeout_means_single_attempt():
    attempts = []

    def connect(**kwargs):
        attempts.append(kwargs)
        raise pymysql.err.OperationalError(2003, "refused")

    config = MySQLConfig(endpoint="db", username="admin", connect_timeout=0)
    manager = ConnectionManager(config, connect=connect)

    with pytest.raises(ConnectionFailedError):
        await manager.acquire()

    assert len(attempts) == 1
    assert "connect_timeout" not in attempts[0]


async def test_failed_ping_is_retried_and_connection_closed():
    clock = FakeClock()
    dead = FakeConnection()
    dead.closed = True
    live = FakeConnection()
    pool = [dead, live]

    config = MySQLConfig(endpoint="db", username="admin", connect_timeout=10)
    manager = ConnectionManager(
        config, connect=lambda **kwargs: pool.pop(0), clock=clock, sleep=clock.sleep
    )

    handle = await manager.acquire()

    assert handle.connection is live
    assert clock.now == pytest.approx(0.5)


async def test_cancellation_aborts_connect_loop():
    def connect(**kwargs):
        raise pymysql.err.OperationalError(2003, "refused")

    async def slow_sleep(seconds):
        await asyncio.sleep(3600)

    config = MySQLConfig(endpoint="db", username="admin", connect_timeout=30)
    manager = ConnectionManager(config, connect=connect, sleep=slow_sleep)

    task = asyncio.create_task(manager.acquire())
    await asyncio.sleep(0.2)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert manager.handle is None


async def test_connect_finishing_after_cancellation_is_closed():
    started = threading.Event()
    release = threading.Event()
    opened = []

    def connect(**kwargs):
        started.set()
        release.wait(5)
        conn = FakeConnection()
        opened.append(conn)
        return conn

    config = MySQLConfig(endpoint="db", username="admin", connect_timeout=30)
    manager = ConnectionManager(config, connect=connect)

    task = asyncio.create_task(manager.acquire())
    while not started.is_set():
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    release.set()
    for _ in range(200):
        if opened and opened[0].closed:
            break
        await asyncio.sleep(0.01)

    assert len(opened) == 1
    assert opened[0].closed
    assert manager.handle is None


async def test_unexpected_driver_errors_become_connection_failed():
    def connect(**kwargs):
        raise RuntimeError("'cryptography' package is required for sha256_password or caching_sha2_password auth methods")

    config = MySQLConfig(endpoint="db", username="admin", connect_timeout=0)
    manager = ConnectionManager(config, connect=connect)

    with pytest.raises(ConnectionFailedError) as exc:
        await manager.acquire()

    assert isinstance(exc.value.__cause__, RuntimeError)
    assert "cryptography" in exc.value.detail
