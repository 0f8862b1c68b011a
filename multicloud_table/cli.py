"""
Multicloud Table Command-Line Interface

Inspect and maintain table data through whichever provider the
configuration selects.
"""

import sys
import json
import asyncio
import logging
import importlib
from pathlib import Path
from typing import Optional, Tuple, Type

import click
from pydantic_core import to_jsonable_python

from multicloud_table import __version__
from multicloud_table.config import ConfigManager, MulticloudTableConfig
from multicloud_table.exceptions import ConfigurationError
from multicloud_table.facade import MulticloudTableClient
from multicloud_table.logging_config import setup_logging
from multicloud_table.models import TableEntity
from multicloud_table.registry import registered_providers

logger = logging.getLogger("multicloud_table.cli")


def _load_config(ctx: click.Context) -> MulticloudTableConfig:
    overrides = {}
    if ctx.obj.get("log_level"):
        overrides["logging"] = {"level": ctx.obj["log_level"].upper()}

    config_file = ctx.obj.get("config")
    try:
        config = ConfigManager().load(
            config_file=str(config_file) if config_file else None,
            cli_overrides=overrides
        )
    except (ValueError, FileNotFoundError) as e:
        raise click.ClickException(f"Invalid configuration: {e}")

    setup_logging(
        level=config.logging.level,
        format_type=config.logging.format,
        log_file=config.logging.file,
        rotation_size=config.logging.rotation_size,
        rotation_count=config.logging.rotation_count,
        module_levels=config.logging.module_levels,
    )
    return config


def _open_client(config: MulticloudTableConfig) -> MulticloudTableClient:
    try:
        return MulticloudTableClient.from_config(config)
    except ConfigurationError as e:
        raise click.ClickException(str(e))


def _resolve_entity_type(dotted_path: Optional[str]) -> Type[TableEntity]:
    """Import a record class given as ``package.module:ClassName``."""
    if not dotted_path:
        return TableEntity

    module_name, _, class_name = dotted_path.partition(":")
    if not module_name or not class_name:
        raise click.BadParameter("expected 'module:ClassName'", param_hint="--entity-type")

    try:
        entity_type = getattr(importlib.import_module(module_name), class_name)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(str(e), param_hint="--entity-type")

    if not isinstance(entity_type, type) or not issubclass(entity_type, TableEntity):
        raise click.BadParameter(f"{dotted_path} is not a TableEntity subclass", param_hint="--entity-type")
    return entity_type


def _to_json(entity: TableEntity) -> str:
    # Binary properties need not be UTF-8
    data = entity.model_dump(by_alias=True)
    return json.dumps(to_jsonable_python(data, bytes_mode="base64"))


@click.group()
@click.version_option(version=__version__, prog_name="multicloud-table")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level (overrides configuration)",
)
@click.pass_context
def cli(ctx, config: Optional[Path], log_level: Optional[str]):
    """
    Multicloud Table - one table API over Azure Table Storage and Google Datastore.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["log_level"] = log_level


@cli.command()
def providers():
    """List registered provider names."""
    for name in sorted(registered_providers()):
        click.echo(name)


@cli.command()
@click.pass_context
def check(ctx):
    """
    Validate configuration and construct the client.

    Examples:
        multicloud-table --config table.yaml check
    """
    config = _load_config(ctx)
    client = _open_client(config)
    asyncio.run(client.close())
    click.echo(f"[OK] Provider {client.provider} configured")


@cli.command()
@click.argument("table")
@click.argument("partition_key")
@click.argument("row_key")
@click.option("--select", "-s", "select", multiple=True, help="Property to read (repeatable)")
@click.option("--entity-type", "-t", default=None, help="Record class as module:ClassName")
@click.pass_context
def get(ctx, table: str, partition_key: str, row_key: str, select: Tuple[str, ...], entity_type: Optional[str]):
    """
    Print one entity as JSON.

    Examples:
        multicloud-table get customers P1 R1
        multicloud-table get customers P1 R1 --select Name -t app.models:Customer
    """
    record_type = _resolve_entity_type(entity_type)
    client = _open_client(_load_config(ctx))

    async def run() -> Optional[TableEntity]:
        async with client:
            return await client.get_entity(table, partition_key, row_key, record_type, list(select) or None)

    entity = asyncio.run(run())
    if entity is None:
        click.echo(f"Entity not found: {table}/{partition_key}/{row_key}", err=True)
        sys.exit(1)

    click.echo(_to_json(entity))


@cli.command()
@click.argument("table")
@click.argument("partition_key")
@click.option("--select", "-s", "select", multiple=True, help="Property to read (repeatable)")
@click.option("--entity-type", "-t", default=None, help="Record class as module:ClassName")
@click.option("--limit", "-n", type=click.IntRange(min=1), default=None, help="Stop after N entities")
@click.pass_context
def query(
    ctx,
    table: str,
    partition_key: str,
    select: Tuple[str, ...],
    entity_type: Optional[str],
    limit: Optional[int]
):
    """
    Print every entity of a partition as JSON lines.

    Examples:
        multicloud-table query customers P1 --limit 10
    """
    record_type = _resolve_entity_type(entity_type)
    client = _open_client(_load_config(ctx))

    async def run() -> int:
        count = 0
        async with client:
            async for entity in client.get_entities(table, partition_key, record_type, list(select) or None):
                click.echo(_to_json(entity))
                count += 1
                if limit is not None and count >= limit:
                    break
        return count

    count = asyncio.run(run())
    logger.info("Listed %d entities (table=%s, partition=%s)", count, table, partition_key)


@cli.command()
@click.argument("table")
@click.argument("partition_key")
@click.argument("row_key")
@click.pass_context
def delete(ctx, table: str, partition_key: str, row_key: str):
    """
    Delete an entity unconditionally.

    Examples:
        multicloud-table delete customers P1 R1
    """
    client = _open_client(_load_config(ctx))

    async def run() -> None:
        async with client:
            await client.delete_entity(table, TableEntity.new(partition_key, row_key))

    asyncio.run(run())
    click.echo(f"[OK] Deleted {table}/{partition_key}/{row_key}")


def main():
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
