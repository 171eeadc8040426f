"""Settings module for the RDS configuration engine."""

import os

from rds_configuration.database.mysql import MySQLConfig


class Settings:
    """Application settings."""

    def __init__(self, mysql: MySQLConfig | None = None) -> None:
        # Service info
        self.environment = os.getenv("ENVIRONMENT", "dev")
        self.service_name = os.getenv("SERVICE_NAME", "rds-configuration")
        self.service_version = os.getenv("SERVICE_VERSION", "0.1.0")
        self.log_level = os.getenv("LOG_LEVEL", "info")

        # PostgreSQL для логов (опционально)
        self.log_dsn = os.getenv("LOG_DSN") or None
        self.log_table = os.getenv("LOG_TABLE", "logs")

        # RDS instance
        self.mysql = mysql or MySQLConfig.from_env()
