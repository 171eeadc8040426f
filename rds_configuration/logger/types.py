"""Types and constants for structured logging."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class Level(str, Enum):
    """Log level определяет уровень важности лога."""

    TRACE = "trace"
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def rank(self) -> int:
        """Numeric severity used for level filtering."""
        return _LEVEL_RANK[self]

    @classmethod
    def parse(cls, value: str | None, default: "Level") -> "Level":
        """Parse LOG_LEVEL style strings, falling back to default."""
        if not value:
            return default
        normalized = value.strip().lower()
        if normalized == "warning":
            normalized = "warn"
        try:
            return cls(normalized)
        except ValueError:
            return default


_LEVEL_RANK = {
    Level.TRACE: 0,
    Level.DEBUG: 1,
    Level.INFO: 2,
    Level.WARN: 3,
    Level.ERROR: 4,
}


class Category(str, Enum):
    """Category определяет категорию события для группировки логов."""

    CONNECTION = "connection"  # Подключение к RDS и retry
    CONFIGURATION = "configuration"  # rds_show_configuration / rds_set_configuration
    VALIDATION = "validation"  # Проверка имён настроек
    RESOURCE = "resource"  # create/read/update/delete/import
    LOG_SINK = "log_sink"  # Запись логов в PostgreSQL


@dataclass
class LogEntry:
    """LogEntry представляет одну запись лога."""

    timestamp: datetime
    service_name: str
    instance_id: str
    environment: str
    level: Level
    message: str
    ingestion_time: datetime = field(default_factory=datetime.utcnow)
    category: Category | None = None
    function_name: str | None = None
    file_path: str | None = None
    line_number: int | None = None
    error_message: str | None = None
    stack_trace: str | None = None
    context: dict[str, Any] | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, Any]:
        """Compact JSON-friendly representation."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "category": self.category.value if self.category else None,
            "message": self.message,
            "service_name": self.service_name,
            "environment": self.environment,
        }
        if self.error_message:
            data["error"] = self.error_message
        if self.context:
            data["context"] = self.context
        if self.duration_ms is not None:
            data["duration_ms"] = self.duration_ms
        return data


@dataclass
class Field:
    """Field для структурированных данных в логах."""

    key: str
    value: Any


def param(key: str, value: Any) -> Field:
    """Универсальная функция для добавления параметра."""
    return Field(key=key, value=value)


def duration_ms(value: int) -> Field:
    """Создаёт поле для duration в миллисекундах."""
    return Field(key="duration_ms", value=value)
