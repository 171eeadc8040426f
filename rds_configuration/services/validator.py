"""Plan-time validation of desired setting names against the instance."""

from rds_configuration.domain.configuration import ConfigurationSnapshot, DesiredConfiguration
from rds_configuration.domain.errors import ValidationError
from rds_configuration.logger.logger import get_logger
from rds_configuration.logger.types import Category, param
from rds_configuration.repository.configuration_repository import ConfigurationReader


def unknown_names(desired: DesiredConfiguration, snapshot: ConfigurationSnapshot) -> list[str]:
    """Declared names the instance does not report, in declaration order."""
    return [name for name in desired.names if name not in snapshot]


def format_valid_settings(snapshot: ConfigurationSnapshot) -> str:
    lines = ["Valid settings are:"]
    for ordinal, setting in enumerate(snapshot.sorted_settings(), start=1):
        lines.append(f'{ordinal:3d}. "{setting.name}": {setting.description or ""}')
    return "\n".join(lines) + "\n"


class DiffValidator:
    """Rejects desired configurations that reference unsupported settings.

    Read-only; safe to run repeatedly and concurrently with reads.
    """

    def __init__(self, reader: ConfigurationReader) -> None:
        self.reader = reader
        self.logger = get_logger().with_category(Category.VALIDATION)

    async def validate(self, desired: DesiredConfiguration) -> None:
        """
        Check every desired name against the live configuration surface.

        Raises:
            ValidationError: one or more names are not supported; the detail
                lists every valid setting with its description
            ConnectionFailedError, QueryError: the surface could not be read
        """
        snapshot = await self.reader.read(include_descriptions=True)
        bad_names = unknown_names(desired, snapshot)

        if not bad_names:
            self.logger.debug("Desired configuration is valid", param("settings", len(desired)))
            return

        self.logger.warn(
            "Unsupported RDS configuration settings",
            param("names", bad_names),
            param("supported", len(snapshot)),
        )
        quoted = '", "'.join(bad_names)
        raise ValidationError(
            f'Unsupported RDS configuration settings: "{quoted}"',
            format_valid_settings(snapshot),
            unknown_names=bad_names,
        )
