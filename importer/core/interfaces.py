"""
Abstract base classes defining the core contracts for the importer.

The source connector and the commerce publisher implement these interfaces,
so the import service can be driven with fakes in tests and a second
marketplace or storefront can be added without touching orchestration.
"""

from abc import ABC, abstractmethod

from importer.core.models import FinalProduct, Listing, PublishedProduct


class IListingSource(ABC):
    """Interface for source marketplace connectors."""

    @abstractmethod
    async def fetch_listing(self, item_id: str) -> Listing:
        """
        Fetch a raw listing and normalize it into the canonical shape.

        Args:
            item_id: Marketplace item identifier.

        Returns:
            Listing with prices converted to source major units.

        Raises:
            SourceNotFoundError: If the upstream returns no usable title/identifier.
            SourceError: If the request fails after retries.
        """
        ...

    @abstractmethod
    def validate(self, listing: Listing) -> bool:
        """Return True if the listing is complete enough to import."""
        ...

    @abstractmethod
    async def test_connection(self) -> bool:
        """Probe the upstream with a known item."""
        ...


class IPublisher(ABC):
    """Interface for commerce backends that receive finished products."""

    @abstractmethod
    async def publish(self, product: FinalProduct) -> PublishedProduct:
        """
        Create the product, its variants, images and metadata.

        Args:
            product: Assembled product with ordered, colour-tagged images.

        Returns:
            PublishedProduct with the destination id, URL and per-image outcome.

        Raises:
            PublishError: If product creation itself fails.
            CommerceAuthError: If the admin token is rejected.
        """
        ...

    @abstractmethod
    async def test_connection(self) -> bool:
        """Probe the admin API without writing anything."""
        ...
