"""Structured logger for the RDS configuration engine."""

import asyncio
import inspect
import json
import os
import sys
import traceback
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from rds_configuration.logger.postgres_writer import PostgresWriter
from rds_configuration.logger.types import Category, Field, Level, LogEntry


class Logger:
    """Logger для структурированного логирования (stderr или PostgreSQL)."""

    def __init__(
        self,
        service_name: str,
        environment: str,
        writer: PostgresWriter | None = None,
        level: Level = Level.INFO,
    ) -> None:
        """
        Initialize Logger.

        Args:
            service_name: Имя сервиса
            environment: Окружение (dev, stage, prod)
            writer: PostgresWriter для записи логов, None - писать в stderr
            level: Минимальный уровень, ниже которого записи отбрасываются
        """
        self.service_name = service_name
        self.environment = environment
        self.writer = writer
        self.level = level
        self.instance_id = self._get_instance_id()

        self._fields: dict[str, Any] = {}
        self._category: Category | None = None

    def trace(self, msg: str, *fields: Field) -> None:
        """Log trace level message."""
        self._log(Level.TRACE, msg, None, *fields)

    def debug(self, msg: str, *fields: Field) -> None:
        """Log debug level message."""
        self._log(Level.DEBUG, msg, None, *fields)

    def info(self, msg: str, *fields: Field) -> None:
        """Log info level message."""
        self._log(Level.INFO, msg, None, *fields)

    def warn(self, msg: str, *fields: Field) -> None:
        """Log warn level message."""
        self._log(Level.WARN, msg, None, *fields)

    def error(self, msg: str, err: Exception | None = None, *fields: Field) -> None:
        """Log error level message."""
        self._log(Level.ERROR, msg, err, *fields)

    def _log(
        self,
        level: Level,
        msg: str,
        err: Exception | None,
        *fields: Field,
    ) -> None:
        if level.rank < self.level.rank:
            return

        frame = inspect.currentframe()
        caller_frame = frame.f_back.f_back if frame and frame.f_back else None

        function_name = None
        file_path = None
        line_number = None

        if caller_frame:
            function_name = caller_frame.f_code.co_name
            file_path = self._clean_file_path(caller_frame.f_code.co_filename)
            line_number = caller_frame.f_lineno

        context: dict[str, Any] = dict(self._fields)
        category = self._category

        for field in fields:
            if field.key == "_category":
                if isinstance(field.value, Category):
                    category = field.value
                continue
            context[field.key] = field.value

        duration_ms = context.pop("duration_ms", None)
        if duration_ms is not None:
            duration_ms = int(duration_ms)

        entry = LogEntry(
            timestamp=datetime.utcnow(),
            service_name=self.service_name,
            instance_id=self.instance_id,
            environment=self.environment,
            level=level,
            category=category,
            function_name=function_name,
            file_path=file_path,
            line_number=line_number,
            message=msg,
            context=context if context else None,
            duration_ms=duration_ms,
        )

        if err:
            entry.error_message = str(err)
            if level is Level.ERROR:
                entry.stack_trace = "".join(
                    traceback.format_exception(type(err), err, err.__traceback__)
                )

        if self.writer:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                # Нет running loop - синхронная запись в буфер
                asyncio.run(self.writer.write(entry))
            else:
                self.writer.schedule(entry)
        else:
            print(json.dumps(entry.to_dict(), default=str), file=sys.stderr)

    def with_category(self, category: Category) -> "Logger":
        """Возвращает новый logger с указанной категорией."""
        new_logger = self._copy()
        new_logger._category = category
        return new_logger

    def with_fields(self, *fields: Field) -> "Logger":
        """Возвращает новый logger с дополнительными полями."""
        new_logger = self._copy()
        for field in fields:
            new_logger._fields[field.key] = field.value
        return new_logger

    def _copy(self) -> "Logger":
        new_logger = Logger(self.service_name, self.environment, self.writer, self.level)
        new_logger.instance_id = self.instance_id
        new_logger._fields = dict(self._fields)
        new_logger._category = self._category
        return new_logger

    @staticmethod
    def _get_instance_id() -> str:
        """Получает уникальный ID инстанса из env или генерирует."""
        if hostname := os.getenv("HOSTNAME"):
            return hostname
        return str(uuid.uuid4())

    @staticmethod
    def _clean_file_path(file_path: str) -> str:
        """Обрезает путь до корня пакета rds_configuration."""
        path = Path(file_path)
        parts = path.parts
        if "rds_configuration" in parts:
            idx = parts.index("rds_configuration")
            return str(Path(*parts[idx:]))
        return path.name


_global_logger: Logger | None = None


def get_logger() -> Logger:
    """Возвращает глобальный logger instance."""
    if _global_logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _global_logger


def init_logger(
    service_name: str,
    environment: str,
    writer: PostgresWriter | None = None,
    level: Level | str = Level.INFO,
) -> Logger:
    """
    Инициализирует глобальный logger.

    Args:
        service_name: Имя сервиса
        environment: Окружение (dev, stage, prod)
        writer: PostgresWriter для записи логов
        level: Минимальный уровень логирования (Level или строка из LOG_LEVEL)

    Returns:
        Logger instance
    """
    global _global_logger
    if not isinstance(level, Level):
        level = Level.parse(level, Level.INFO)
    _global_logger = Logger(service_name, environment, writer, level)
    return _global_logger
