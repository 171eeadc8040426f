"""RDS configuration repository (mysql.rds_show_configuration / rds_set_configuration)."""

import time

import pymysql

from rds_configuration.database.mysql import ConnectionManager
from rds_configuration.domain.configuration import (
    ConfigurationSnapshot,
    DesiredConfiguration,
    parse_setting_row,
)
from rds_configuration.domain.errors import QueryError
from rds_configuration.logger.logger import get_logger
from rds_configuration.logger.types import Category, duration_ms, param

SHOW_CONFIGURATION = "CALL mysql.rds_show_configuration"
SET_CONFIGURATION = "CALL mysql.rds_set_configuration(%s, %s)"


class ConfigurationReader:
    """Reads the full configuration surface of the instance."""

    def __init__(self, connections: ConnectionManager) -> None:
        """
        Initialize ConfigurationReader.

        Args:
            connections: ConnectionManager owning the shared handle
        """
        self.connections = connections
        self.logger = get_logger().with_category(Category.CONFIGURATION)

    async def read(self, include_descriptions: bool) -> ConfigurationSnapshot:
        """
        Take a snapshot of every supported setting.

        Args:
            include_descriptions: keep the human-readable description per setting

        Returns:
            ConfigurationSnapshot keyed by setting name

        Raises:
            ConnectionFailedError: no connection could be established
            QueryError: the procedure failed or returned an undecodable row
        """
        handle = await self.connections.acquire()
        started = time.monotonic()

        try:
            rows = await handle.fetch_all(SHOW_CONFIGURATION)
        except pymysql.Error as e:
            self.logger.error("rds_show_configuration failed", e)
            raise QueryError("Failed to read RDS configuration", str(e)) from e

        settings = []
        for index, row in enumerate(rows, start=1):
            try:
                # description читаем всегда, даже если он не нужен
                settings.append(parse_setting_row(row, include_descriptions))
            except ValueError as e:
                self.logger.error(
                    "Undecodable rds_show_configuration row",
                    e,
                    param("row", index),
                )
                raise QueryError(
                    "Failed to read RDS configuration",
                    f"Row {index} could not be decoded: {e}",
                ) from e

        snapshot = ConfigurationSnapshot(settings)
        self.logger.debug(
            "RDS configuration read",
            param("settings", len(snapshot)),
            param("with_descriptions", include_descriptions),
            duration_ms(int((time.monotonic() - started) * 1000)),
        )
        return snapshot


class ConfigurationWriter:
    """Applies desired settings one procedure call at a time."""

    def __init__(self, connections: ConnectionManager) -> None:
        self.connections = connections
        self.logger = get_logger().with_category(Category.CONFIGURATION)

    async def apply(self, desired: DesiredConfiguration) -> None:
        """
        Call rds_set_configuration for every desired setting, in name order.

        The first failure stops the run. Settings applied before it are not
        rolled back; re-running apply is safe.

        Raises:
            ConnectionFailedError: no connection could be established
            QueryError: a rds_set_configuration call failed
        """
        handle = await self.connections.acquire()

        applied = 0
        for item in desired.ordered():
            self.logger.trace(
                "Calling rds_set_configuration",
                param("name", item.name),
                param("value", item.value),
            )
            try:
                await handle.execute(SET_CONFIGURATION, (item.name, item.value))
            except pymysql.Error as e:
                self.logger.error(
                    "rds_set_configuration failed",
                    e,
                    param("name", item.name),
                    param("value", item.value),
                    param("applied_before_failure", applied),
                )
                raise QueryError(
                    f'Failed to set RDS configuration "{item.name}"',
                    str(e),
                ) from e
            applied += 1
            self.logger.info(
                "RDS setting applied",
                param("name", item.name),
                param("value", item.value),
            )
