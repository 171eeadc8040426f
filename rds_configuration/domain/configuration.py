"""Configuration domain models."""

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, replace
from enum import Enum
from types import MappingProxyType
from typing import Any

from rds_configuration.domain.errors import QueryError, RdsConfigurationError, ValidationError


@dataclass(frozen=True)
class Setting:
    """Single RDS configuration setting as reported by the instance."""

    name: str
    value: int | None
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize; the description key is present only when populated."""
        data: dict[str, Any] = {"name": self.name, "value": self.value}
        if self.description is not None:
            data["description"] = self.description
        return data


def _parse_value(raw: Any) -> int | None:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValueError(f"unexpected boolean value {raw!r}")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("ascii")
    if isinstance(raw, str):
        text = raw.strip()
        # rds_show_configuration отдаёт value как строку
        if text.lstrip("+-").isdigit():
            return int(text)
    raise ValueError(f"value {raw!r} is not an integer")


def parse_setting_row(row: Mapping[str, Any], include_description: bool = True) -> Setting:
    """Decode one rds_show_configuration row into a Setting.

    Raises:
        ValueError: if the row does not have the expected shape
    """
    missing = [key for key in ("name", "value", "description") if key not in row]
    if missing:
        raise ValueError(f"row is missing columns: {', '.join(missing)}")

    name = row["name"]
    if isinstance(name, (bytes, bytearray)):
        name = name.decode("utf-8")
    if not isinstance(name, str) or not name:
        raise ValueError(f"setting name {name!r} is not a non-empty string")

    description = row["description"]
    if isinstance(description, (bytes, bytearray)):
        description = description.decode("utf-8")
    if description is not None and not isinstance(description, str):
        raise ValueError(f"description of {name!r} is not a string")

    try:
        value = _parse_value(row["value"])
    except ValueError as e:
        raise ValueError(f"setting {name!r}: {e}") from e

    return Setting(
        name=name,
        value=value,
        description=(description or "") if include_description else None,
    )


class ConfigurationSnapshot(Mapping[str, Setting]):
    """Immutable point-in-time view of the instance configuration, keyed by name."""

    def __init__(self, settings: Iterable[Setting] = ()) -> None:
        by_name: dict[str, Setting] = {}
        for setting in settings:
            if not setting.name:
                raise QueryError("Invalid RDS configuration", "Setting with an empty name")
            if setting.name in by_name:
                raise QueryError(
                    "Invalid RDS configuration",
                    f'Setting "{setting.name}" reported more than once',
                )
            by_name[setting.name] = setting
        self._settings = MappingProxyType(by_name)

    def __getitem__(self, name: str) -> Setting:
        return self._settings[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._settings)

    def __len__(self) -> int:
        return len(self._settings)

    def __repr__(self) -> str:
        return f"ConfigurationSnapshot({sorted(self._settings)!r})"

    def sorted_settings(self) -> list[Setting]:
        """Settings ordered by name, for stable output only."""
        return [self._settings[name] for name in sorted(self._settings)]

    def without_descriptions(self) -> "ConfigurationSnapshot":
        return ConfigurationSnapshot(
            replace(setting, description=None) for setting in self._settings.values()
        )

    def to_list(self) -> list[dict[str, Any]]:
        return [setting.to_dict() for setting in self.sorted_settings()]


@dataclass(frozen=True)
class DesiredSetting:
    """Declared (name, value) pair; value is always a concrete integer."""

    name: str
    value: int


class DesiredConfiguration:
    """Caller-declared settings to apply. Holds at least one entry, names unique."""

    def __init__(self, settings: Iterable[DesiredSetting]) -> None:
        items = list(settings)
        if not items:
            raise ValidationError(
                "Invalid desired configuration",
                "At least one setting must be declared.",
            )

        seen: set[str] = set()
        for item in items:
            if not isinstance(item.name, str) or not item.name:
                raise ValidationError(
                    "Invalid desired configuration",
                    f"Setting name {item.name!r} must be a non-empty string.",
                )
            if isinstance(item.value, bool) or not isinstance(item.value, int):
                raise ValidationError(
                    "Invalid desired configuration",
                    f'Value of "{item.name}" must be an integer, got {item.value!r}.',
                )
            if item.name in seen:
                raise ValidationError(
                    "Invalid desired configuration",
                    f'Setting "{item.name}" is declared more than once.',
                )
            seen.add(item.name)

        self._settings = tuple(items)

    @classmethod
    def from_mapping(cls, values: Mapping[str, int]) -> "DesiredConfiguration":
        return cls(DesiredSetting(name, value) for name, value in values.items())

    @classmethod
    def from_entries(cls, entries: Any) -> "DesiredConfiguration":
        """
        Build from the declared-resource surface.

        Args:
            entries: List of {"name": str, "value": int} dicts (parsed JSON)

        Returns:
            DesiredConfiguration
        """
        if not isinstance(entries, (list, tuple)):
            raise ValidationError(
                "Invalid desired configuration",
                f"Settings must be a list of {{name, value}} entries, got {type(entries).__name__}.",
            )
        settings = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                raise ValidationError(
                    "Invalid desired configuration",
                    f"Each setting must be an object with name and value, got {entry!r}.",
                )
            if "name" not in entry or "value" not in entry:
                raise ValidationError(
                    "Invalid desired configuration",
                    f"Each setting requires both name and value, got {dict(entry)!r}.",
                )
            settings.append(DesiredSetting(entry["name"], entry["value"]))
        return cls(settings)

    def __iter__(self) -> Iterator[DesiredSetting]:
        return iter(self._settings)

    def __len__(self) -> int:
        return len(self._settings)

    @property
    def names(self) -> list[str]:
        """Declared names in declaration order."""
        return [item.name for item in self._settings]

    def ordered(self) -> list[DesiredSetting]:
        """Deterministic application order."""
        return sorted(self._settings, key=lambda item: item.name)


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class Diagnostic:
    """User-facing (severity, summary, detail) feedback unit."""

    severity: Severity
    summary: str
    detail: str = ""

    @classmethod
    def from_error(cls, err: Exception) -> "Diagnostic":
        if isinstance(err, RdsConfigurationError):
            return cls(Severity.ERROR, err.summary, err.detail)
        return cls(Severity.ERROR, str(err))

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def to_dict(self) -> dict[str, str]:
        return {
            "severity": self.severity.value,
            "summary": self.summary,
            "detail": self.detail,
        }
