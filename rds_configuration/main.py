"""
rds-configuration - reconcile RDS/Aurora MySQL configuration settings.

Runs one operation against the instance and prints the resulting state and
diagnostics as JSON.
"""

import argparse
import asyncio
import json
import sys
from typing import Any

from rds_configuration.config.settings import Settings
from rds_configuration.database.mysql import ConnectionManager
from rds_configuration.domain.configuration import DesiredConfiguration, Diagnostic
from rds_configuration.domain.errors import ConfigurationError, RdsConfigurationError
from rds_configuration.handlers.resource_handler import (
    SINGLETON_ID,
    ConfigurationDataSource,
    ConfigurationResource,
    OperationResult,
    ResourceState,
)
from rds_configuration.logger.logger import init_logger
from rds_configuration.logger.postgres_writer import PostgresWriter
from rds_configuration.logger.types import param

OPERATIONS = ("show", "plan", "apply", "read", "import", "delete")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="rds-configuration")
    parser.add_argument("operation", choices=OPERATIONS)
    parser.add_argument(
        "--settings",
        help="Path to a JSON list of {\"name\": ..., \"value\": ...} (plan/apply)",
        default=None,
    )
    return parser.parse_args(argv)


def load_desired(path: str) -> DesiredConfiguration:
    try:
        with open(path, encoding="utf-8") as handle:
            entries: Any = json.load(handle)
    except OSError as e:
        raise ConfigurationError("Cannot read settings file", f"{path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigurationError("Invalid settings file", f"{path} is not valid JSON: {e}") from e
    return DesiredConfiguration.from_entries(entries)


async def run(args: argparse.Namespace, connections: ConnectionManager) -> OperationResult:
    if args.operation == "show":
        return await ConfigurationDataSource(connections).read()

    resource = ConfigurationResource(connections)
    if args.operation in ("plan", "apply"):
        if not args.settings:
            raise SystemExit(f"--settings is required for {args.operation}")
        try:
            desired = load_desired(args.settings)
        except RdsConfigurationError as e:
            return OperationResult(state=None, diagnostics=[Diagnostic.from_error(e)])
        if args.operation == "plan":
            return await resource.plan(desired)
        return await resource.create(desired)
    if args.operation == "read":
        return await resource.read(ResourceState(id=SINGLETON_ID))
    if args.operation == "import":
        return OperationResult(state=await resource.import_state())
    return await resource.delete()


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        settings = Settings()
    except RdsConfigurationError as e:
        print(json.dumps({"diagnostics": [Diagnostic.from_error(e).to_dict()]}, indent=2))
        return 1

    log_writer: PostgresWriter | None = None
    if settings.log_dsn:
        log_writer = PostgresWriter(dsn=settings.log_dsn, table=settings.log_table)
        await log_writer.connect()

    logger = init_logger(
        service_name=settings.service_name,
        environment=settings.environment,
        writer=log_writer,
        level=settings.log_level,
    )
    logger.info(
        "Starting rds-configuration",
        param("operation", args.operation),
        param("address", settings.mysql.address),
        param("version", settings.service_version),
    )

    connections = ConnectionManager(settings.mysql)
    try:
        result = await run(args, connections)
    except RdsConfigurationError as e:
        result = OperationResult(state=None, diagnostics=[Diagnostic.from_error(e)])
    finally:
        connections.close()
        if log_writer:
            await log_writer.close()

    print(json.dumps(result.to_dict(), indent=2))
    return 1 if result.has_error else 0


def run_cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run_cli()
