"""
Abstract base source connector with integrated resilience patterns.

Provides the template method pattern for all marketplace connectors:
fetch_listing() → _fetch_raw() → _transform() → validate()
"""

import logging
import time
from abc import abstractmethod
from typing import Any

from importer.core.exceptions import SourceError, SourceNotFoundError, SourceRateLimitError
from importer.core.interfaces import IListingSource
from importer.core.models import Listing
from importer.core.resilience import CircuitBreaker, retry_with_backoff

logger = logging.getLogger(__name__)


class BaseSource(IListingSource):
    """
    Abstract base class for marketplace connectors.

    Integrates CircuitBreaker and retry_with_backoff into a single
    template method pipeline.

    Subclasses must implement:
        _fetch_raw(item_id: str) -> dict   — Call the upstream API
        _transform(raw_data: dict, item_id: str) -> Listing — Normalize the payload
    """

    # Subclasses set this
    SOURCE_NAME: str = "unknown"

    def __init__(self, circuit_breaker: CircuitBreaker | None = None):
        self._circuit_breaker = circuit_breaker or CircuitBreaker(name=self.SOURCE_NAME)
        self._circuit_breaker.ignore(SourceNotFoundError)

    async def fetch_listing(self, item_id: str) -> Listing:
        """
        Full fetch pipeline: request → normalize → validate.

        Raises:
            SourceNotFoundError: No usable listing for this id. Not counted
                against the circuit breaker.
            SourceError: Upstream failure after retries.
            CircuitBreakerOpenError: Too many recent upstream failures.
        """
        start_time = time.monotonic()
        logger.info(f"[{self.SOURCE_NAME}] Fetching item: {item_id}")

        async with self._circuit_breaker:
            listing = await self._fetch_with_retry(item_id)

        elapsed = time.monotonic() - start_time
        logger.info(
            f"[{self.SOURCE_NAME}] Fetched '{listing.title[:50]}' "
            f"({len(listing.skus)} SKUs, {len(listing.images)} images) in {elapsed:.1f}s"
        )
        return listing

    @retry_with_backoff(
        max_retries=3,
        base_delay=2.0,
        retryable_exceptions=(SourceRateLimitError,),
    )
    async def _fetch_with_retry(self, item_id: str) -> Listing:
        """Execute the fetch pipeline with retry protection."""
        try:
            raw_data = await self._fetch_raw(item_id)
            listing = self._transform(raw_data, item_id)

            if not self.validate(listing):
                raise SourceNotFoundError(item_id, details={"raw_keys": sorted(raw_data)})

            return listing

        except SourceError:
            raise
        except Exception as e:
            raise SourceError(
                f"Unexpected error fetching {self.SOURCE_NAME} item {item_id}: {e}",
                details={"item_id": item_id, "error_type": type(e).__name__},
            ) from e

    def validate(self, listing: Listing) -> bool:
        """Validate that the listing has minimum required data."""
        return listing.is_complete

    @abstractmethod
    async def _fetch_raw(self, item_id: str) -> dict[str, Any]:
        """
        Call the upstream product endpoint.

        Args:
            item_id: Marketplace item identifier.

        Returns:
            Decoded JSON response body.
        """
        ...

    @abstractmethod
    def _transform(self, raw_data: dict[str, Any], item_id: str) -> Listing:
        """
        Transform a raw response into a Listing domain model.

        Raises:
            SourceNotFoundError: If the payload has no title and no identifier.
        """
        ...
