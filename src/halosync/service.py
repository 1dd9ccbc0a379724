"""Wiring shared by the HTTP trigger and the CLI.

Builds the default store and HaloPSA client from configuration, turns
request options into SyncOptions, and runs a sync or preview end to end,
returning ``(status, body)`` the way the trigger responds.
"""

import logging
from typing import Any, Callable, Dict, Optional, Tuple

from halosync.config import config
from halosync.connectors.base import ConnectorError, DirectoryClient, RequestPolicy
from halosync.connectors.halopsa import HaloPSAClient, resolve_endpoints
from halosync.store.base import Record, RecordStore
from halosync.store.sqlite import SQLiteRecordStore
from halosync.sync.engine import ReconciliationEngine, load_settings
from halosync.sync.models import FieldMapping, SyncOptions
from halosync.sync.preview import preview_mapping
from halosync.sync.report import RunReporter

logger = logging.getLogger(__name__)

# Builds a directory client from the settings record (None when absent)
ClientFactory = Callable[[Optional[Record]], DirectoryClient]


def default_store() -> RecordStore:
    """SQLite store at the configured path."""
    config.ensure_directories()
    return SQLiteRecordStore(config.db_path)


def default_client_factory(settings: Optional[Record]) -> DirectoryClient:
    """HaloPSA client from the settings record and environment.

    Raises:
        ConfigurationError: If credentials or URLs are missing
    """
    endpoints = resolve_endpoints(settings, config.halopsa)
    policy = RequestPolicy(read_timeout=config.http_timeout_s)
    return HaloPSAClient(endpoints, policy=policy)


def build_options(
    test_only: bool = False,
    field_mapping: Optional[Dict[str, Any]] = None,
) -> SyncOptions:
    """SyncOptions from request values and configured group sizes."""
    return SyncOptions(
        test_only=test_only,
        field_mapping=FieldMapping(**field_mapping) if field_mapping else FieldMapping(),
        update_group_size=config.update_group_size,
        create_batch_size=config.create_batch_size,
    )


async def run_sync(
    store: RecordStore,
    client_factory: ClientFactory,
    options: SyncOptions,
) -> Tuple[int, Dict[str, Any]]:
    """Run one sync and shape the response.

    Fatal errors (configuration, authentication, organizations fetch) come
    back as an error body with the mapped status.
    """
    reporter = RunReporter()
    try:
        settings = await load_settings(store)
        client = client_factory(settings)
        engine = ReconciliationEngine(client, store, settings=settings)
        result = await engine.run(options)
    except ConnectorError as e:
        return reporter.failure(e)
    except Exception as e:
        logger.exception("Unexpected sync failure")
        return reporter.failure(e)

    body = reporter.success(result)
    logger.info(body["message"])
    return 200, body


async def run_preview(
    store: RecordStore,
    client_factory: ClientFactory,
) -> Tuple[int, Dict[str, Any]]:
    """Build the mapping preview and shape the response."""
    reporter = RunReporter()
    try:
        settings = await load_settings(store)
        client = client_factory(settings)
        return 200, await preview_mapping(client, store, settings=settings)
    except ConnectorError as e:
        return reporter.failure(e)
    except Exception as e:
        logger.exception("Unexpected preview failure")
        return reporter.failure(e)
