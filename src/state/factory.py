"""Factory for state store backends."""

import logging

from src.config.settings import Settings
from src.state.store import JSONStateStore, StateStore

logger = logging.getLogger("gateway.state")


def create_state_store(settings: Settings) -> StateStore | None:
    """Build the configured state store. Returns None for in-memory only."""
    backend = settings.state_store_backend.lower()

    if backend == "none":
        return None

    if backend == "json":
        return JSONStateStore(settings.state_file_path)

    if backend == "dynamodb":
        # Lazy import to avoid boto3 dependency when not needed
        from src.state.dynamodb_store import DynamoDBStateStore
        return DynamoDBStateStore(
            table_name=settings.dynamodb_table_name,
            region=settings.aws_region,
        )

    logger.warning(
        "Unknown state store backend, running in memory",
        extra={"audit_data": {"backend": backend}},
    )
    return None
