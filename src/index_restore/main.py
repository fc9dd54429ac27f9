"""CLI entry point for the index restore utility."""

import sys
import uuid
from pathlib import Path
from typing import Optional

import click

from index_restore.archive import ArchiveCatalog, ArchiveRef, parse_keywords
from index_restore.config import ID_STRATEGIES, IndexRestoreConfig, load_config
from index_restore.exceptions import ConfigurationError, RestoreError, SearchEngineError
from index_restore.importer import ArchiveImporter
from index_restore.metrics import RestoreMetrics
from index_restore.progress_tracker import ProgressTracker
from index_restore.s3_client import S3Client
from index_restore.search_client import ElasticsearchBulkClient, create_client
from utils.logging import configure_logging, get_logger, quiet_third_party_loggers


@click.group()
@click.option(
    "--config",
    required=True,
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Verbose output (DEBUG level)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    help="Log level (default: INFO)",
)
@click.option(
    "--log-format",
    default="console",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Log format: 'console' for human-readable output, 'json' for structured logs (default: console)",
)
@click.pass_context
def main(
    ctx: click.Context,
    config: Path,
    verbose: bool,
    log_level: str,
    log_format: str,
) -> None:
    """Search, check and restore exported indices held in S3.

    Examples:

    \b
    # Find archives whose path contains both fragments
    index-restore --config config.yaml search "logs,prod"

    \b
    # Restore one archive
    index-restore --config config.yaml import --index logs --project prod
    """
    configure_logging(
        log_level="DEBUG" if verbose else log_level.upper(),
        log_format=log_format,
        correlation_id=str(uuid.uuid4()),
    )
    quiet_third_party_loggers()

    logger = get_logger("restore_cli")
    try:
        ctx.obj = load_config(config)
    except ConfigurationError as e:
        logger.error("Failed to load configuration", error=str(e), config_file=str(config))
        sys.exit(1)
    logger.debug("Configuration loaded", config_file=str(config))


@main.command()
@click.argument("keywords")
@click.pass_obj
def search(config: IndexRestoreConfig, keywords: str) -> None:
    """Search the bucket for archives matching comma-separated KEYWORDS."""
    logger = get_logger("restore_cli")
    catalog = ArchiveCatalog(
        S3Client(config.s3, logger=logger),
        extension=config.restore.archive_extension,
        logger=logger,
    )
    try:
        entries = catalog.search(parse_keywords(keywords))
    except RestoreError as e:
        _fail(logger, "Search failed", e)

    click.echo(f"Found {len(entries)} archive(s)")


@main.command()
@click.option("--index", required=True, help="Index name of the archive")
@click.option("--project", required=True, help="Project name of the archive")
@click.pass_obj
def check(config: IndexRestoreConfig, index: str, project: str) -> None:
    """Check that the archive for INDEX/PROJECT exists."""
    logger = get_logger("restore_cli")
    catalog = ArchiveCatalog(
        S3Client(config.s3, logger=logger),
        extension=config.restore.archive_extension,
        logger=logger,
    )
    try:
        key = catalog.check(ArchiveRef(index=index, project=project))
    except RestoreError as e:
        _fail(logger, "Check failed", e)

    click.echo(f"Archive exists: {key}")


@main.command("import")
@click.option("--index", required=True, help="Index name of the archive")
@click.option("--project", required=True, help="Project name of the archive")
@click.option(
    "--target-index",
    default=None,
    help="Destination index (default: the archive's index name)",
)
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    default=None,
    help="Operations per bulk flush (overrides config)",
)
@click.option(
    "--id-strategy",
    type=click.Choice(list(ID_STRATEGIES)),
    default=None,
    help="Document id strategy (overrides config)",
)
@click.option(
    "--quiet",
    is_flag=True,
    help="Suppress progress output",
)
@click.pass_obj
def import_archive(
    config: IndexRestoreConfig,
    index: str,
    project: str,
    target_index: Optional[str],
    batch_size: Optional[int],
    id_strategy: Optional[str],
    quiet: bool,
) -> None:
    """Restore the archive for INDEX/PROJECT into Elasticsearch."""
    logger = get_logger("restore_cli")

    overrides = {}
    if batch_size is not None:
        overrides["batch_size"] = batch_size
    if id_strategy is not None:
        overrides["id_strategy"] = id_strategy
    restore_config = config.restore.model_copy(update=overrides)

    monitoring = config.monitoring
    metrics = RestoreMetrics(logger=logger)

    try:
        if monitoring.metrics_enabled:
            try:
                metrics.start_server(monitoring.metrics_port)
            except OSError as e:
                raise ConfigurationError(
                    f"Cannot start metrics server on port {monitoring.metrics_port}: {e}",
                    context={"port": monitoring.metrics_port},
                ) from e

        bulk_client = ElasticsearchBulkClient(create_client(config.elasticsearch), logger=logger)
        if not bulk_client.ping():
            raise SearchEngineError(
                "Elasticsearch is not reachable",
                context={"hosts": config.elasticsearch.hosts},
            )

        importer = ArchiveImporter(
            s3_client=S3Client(config.s3, logger=logger),
            bulk_client=bulk_client,
            restore_config=restore_config,
            progress_factory=lambda: ProgressTracker(
                quiet=quiet or monitoring.quiet_mode,
                update_interval=monitoring.progress_update_interval,
                logger=logger,
            ),
            metrics=metrics,
            logger=logger,
        )
        result = importer.import_archive(
            ArchiveRef(index=index, project=project),
            target_index=target_index,
        )
    except RestoreError as e:
        _fail(logger, "Import failed", e)

    click.echo(
        f"Restored {result.documents_submitted:,} documents into {result.target_index} "
        f"({result.flushes} bulk flushes, {result.blank_lines} blank lines skipped)"
    )


def _fail(logger, event: str, error: RestoreError) -> None:
    logger.error(event, error_type=type(error).__name__, error=str(error))
    click.echo(f"Error: {error.message}", err=True)
    sys.exit(1)


if __name__ == "__main__":
    main()
