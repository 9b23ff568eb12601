"""
Builds the services CLI commands work with from the loaded configuration.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import click

from ...core.config import ConfigManager, IngestionConfig
from ...jobs.events import LoggingEventBus
from ...jobs.queue import JobQueue
from ...jobs.store import InMemoryJobStore, SqliteJobStore

logger = logging.getLogger(__name__)


def load_config(ctx: click.Context) -> IngestionConfig:
    """Configuration for this invocation, loaded once and cached on the context."""
    config = ctx.obj.get("config")
    if config is None:
        config = ConfigManager(ctx.obj.get("config_path")).load_config()
        ctx.obj["config"] = config
        if not ctx.obj.get("verbose"):
            logging.getLogger("docingest").setLevel(config.log_level)
    return config


@asynccontextmanager
async def open_queue(config: IngestionConfig) -> AsyncIterator[JobQueue]:
    """Job queue over the configured store; the store is closed on exit."""
    if config.storage.backend == "memory":
        logger.warning("Using in-memory job store; jobs will not outlive this command")
        yield JobQueue(InMemoryJobStore(), LoggingEventBus())
        return

    async with SqliteJobStore(config.storage.database_path) as store:
        yield JobQueue(store, LoggingEventBus())
