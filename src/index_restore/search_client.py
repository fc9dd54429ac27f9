"""Elasticsearch client wiring for bulk restores."""

from typing import Any, Optional

import structlog
from elasticsearch import ApiError, Elasticsearch, TransportError

from index_restore.bulk import BulkBatch
from index_restore.config import ElasticsearchConfig
from index_restore.exceptions import ConfigurationError, SearchEngineError
from utils.logging import get_logger


def create_client(config: ElasticsearchConfig) -> Elasticsearch:
    """Build an Elasticsearch client from configuration.

    Retries are disabled: a failed bulk request is handled by the caller.

    Raises:
        ConfigurationError: If credentials are configured but missing
    """
    kwargs: dict[str, Any] = {
        "verify_certs": config.verify_certs,
        "request_timeout": config.request_timeout,
        "max_retries": 0,
        "retry_on_timeout": False,
    }
    try:
        api_key = config.get_api_key()
        basic_auth = config.get_basic_auth()
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    if api_key:
        kwargs["api_key"] = api_key
    elif basic_auth:
        kwargs["basic_auth"] = basic_auth

    return Elasticsearch(config.hosts, **kwargs)


class ElasticsearchBulkClient:
    """Hands out bulk batches bound to one Elasticsearch client."""

    def __init__(
        self,
        client: Elasticsearch,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize bulk client.

        Args:
            client: Elasticsearch client
            logger: Optional logger instance
        """
        self.client = client
        self.logger = logger or get_logger("search_client")

    def new_bulk(self) -> BulkBatch:
        """Create an empty bulk batch."""
        return BulkBatch(send=self._send_bulk, logger=self.logger)

    def ping(self) -> bool:
        """Return True if the cluster answers."""
        try:
            return bool(self.client.ping())
        except (ApiError, TransportError) as e:
            raise SearchEngineError(f"Elasticsearch ping failed: {e}") from e

    def _send_bulk(self, operations: list[Any]) -> dict[str, Any]:
        try:
            response = self.client.bulk(operations=operations)
        except (ApiError, TransportError) as e:
            raise SearchEngineError(
                f"Bulk request failed: {e}",
                context={"operations": len(operations) // 2},
            ) from e
        return getattr(response, "body", response)
