"""Logger module for the RDS configuration engine."""

from rds_configuration.logger.logger import Logger, get_logger, init_logger
from rds_configuration.logger.postgres_writer import PostgresWriter
from rds_configuration.logger.types import Category, Field, Level, LogEntry

__all__ = [
    "Logger",
    "get_logger",
    "init_logger",
    "PostgresWriter",
    "Category",
    "Level",
    "LogEntry",
    "Field",
]
