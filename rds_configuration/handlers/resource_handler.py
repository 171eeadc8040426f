"""Resource and data-source operations for the RDS configuration object.

The instance exposes one global configuration, so the managed resource always
carries the fixed id ``singleton``. Delete only forgets local tracking.
"""

import time
from dataclasses import dataclass, field
from typing import Any

from rds_configuration.database.mysql import ConnectionManager
from rds_configuration.domain.configuration import (
    ConfigurationSnapshot,
    DesiredConfiguration,
    Diagnostic,
    Severity,
)
from rds_configuration.domain.errors import ImportStateError, RdsConfigurationError
from rds_configuration.logger.logger import get_logger
from rds_configuration.logger.types import Category, param
from rds_configuration.repository.configuration_repository import (
    ConfigurationReader,
    ConfigurationWriter,
)
from rds_configuration.services.validator import DiffValidator

SINGLETON_ID = "singleton"

DELETE_WARNING = Diagnostic(
    severity=Severity.WARNING,
    summary="RDS configuration is not actually deleted or modified in RDS",
    detail=(
        "Deleting an RDS configuration will remove the configuration from the "
        "managed state, but does not delete, change, or revert anything in the "
        "RDS instance. Any previously configured settings will persist with "
        "their most recent values."
    ),
)


@dataclass
class ResourceState:
    """Locally tracked state: an id (None once unmanaged) and the settings list."""

    id: str | None
    settings: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_snapshot(cls, state_id: str | None, snapshot: ConfigurationSnapshot) -> "ResourceState":
        return cls(id=state_id, settings=snapshot.to_list())

    @property
    def managed(self) -> bool:
        return bool(self.id)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "setting": self.settings}


@dataclass
class OperationResult:
    state: ResourceState | None
    diagnostics: list[Diagnostic] = field(default_factory=list)

    @property
    def has_error(self) -> bool:
        return any(d.is_error for d in self.diagnostics)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.to_dict() if self.state else None,
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }


class ConfigurationResource:
    """Create/read/update/delete/import for the managed configuration."""

    def __init__(self, connections: ConnectionManager) -> None:
        """
        Initialize ConfigurationResource.

        Args:
            connections: ConnectionManager shared with other resources in the process
        """
        self.reader = ConfigurationReader(connections)
        self.writer = ConfigurationWriter(connections)
        self.validator = DiffValidator(self.reader)
        self.logger = get_logger().with_category(Category.RESOURCE)

    async def plan(self, desired: DesiredConfiguration) -> OperationResult:
        """Validate desired names without touching the instance."""
        try:
            await self.validator.validate(desired)
        except RdsConfigurationError as e:
            return self._failed("plan", e)
        return OperationResult(state=None)

    async def create(self, desired: DesiredConfiguration) -> OperationResult:
        return await self._create_or_update("create", desired)

    async def update(self, desired: DesiredConfiguration) -> OperationResult:
        return await self._create_or_update("update", desired)

    async def _create_or_update(
        self, operation: str, desired: DesiredConfiguration
    ) -> OperationResult:
        try:
            await self.validator.validate(desired)
            await self.writer.apply(desired)
            snapshot = await self.reader.read(include_descriptions=False)
        except RdsConfigurationError as e:
            return self._failed(operation, e)

        self.logger.info(
            "RDS configuration applied",
            param("operation", operation),
            param("settings", len(desired)),
        )
        return OperationResult(state=ResourceState.from_snapshot(SINGLETON_ID, snapshot))

    async def read(self, state: ResourceState | None = None) -> OperationResult:
        """Refresh settings from the instance; drift is reported as-is and the id is kept."""
        try:
            snapshot = await self.reader.read(include_descriptions=False)
        except RdsConfigurationError as e:
            return self._failed("read", e)

        state_id = state.id if state else None
        return OperationResult(state=ResourceState.from_snapshot(state_id, snapshot))

    async def delete(self, state: ResourceState | None = None) -> OperationResult:
        """Forget the resource locally. The instance keeps its settings."""
        self.logger.warn(
            DELETE_WARNING.summary,
            param("previous_id", state.id if state else None),
        )
        return OperationResult(state=ResourceState(id=None), diagnostics=[DELETE_WARNING])

    async def import_state(self) -> ResourceState:
        """
        Adopt the current instance configuration as managed state.

        Raises:
            ImportStateError: the configuration could not be read
        """
        try:
            snapshot = await self.reader.read(include_descriptions=True)
        except RdsConfigurationError as e:
            self.logger.error("RDS configuration import failed", e)
            raise ImportStateError(e.summary, e.detail) from e

        self.logger.info("RDS configuration imported", param("settings", len(snapshot)))
        return ResourceState.from_snapshot(SINGLETON_ID, snapshot.without_descriptions())

    def _failed(self, operation: str, err: RdsConfigurationError) -> OperationResult:
        self.logger.error(
            f"RDS configuration {operation} failed",
            err,
            param("error_type", type(err).__name__),
        )
        return OperationResult(state=None, diagnostics=[Diagnostic.from_error(err)])


class ConfigurationDataSource:
    """Read-only view of every setting, with descriptions."""

    def __init__(self, connections: ConnectionManager) -> None:
        self.reader = ConfigurationReader(connections)
        self.logger = get_logger().with_category(Category.RESOURCE)

    async def read(self) -> OperationResult:
        try:
            snapshot = await self.reader.read(include_descriptions=True)
        except RdsConfigurationError as e:
            self.logger.error("RDS configuration data source read failed", e)
            return OperationResult(state=None, diagnostics=[Diagnostic.from_error(e)])

        return OperationResult(
            state=ResourceState.from_snapshot(str(int(time.time())), snapshot)
        )
