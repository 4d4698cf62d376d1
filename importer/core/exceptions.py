"""
Custom exception hierarchy for the importer.

All pipeline-specific exceptions inherit from ImporterError, enabling
catch-all handling in the per-item driver while allowing fine-grained
handling inside individual components.
"""


class ImporterError(Exception):
    """Base exception for all importer errors."""

    def __init__(self, message: str = "", details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


# ─── Source Errors ────────────────────────────────────────────


class SourceError(ImporterError):
    """General error while fetching a listing from the source marketplace."""

    pass


class SourceRateLimitError(SourceError):
    """Source marketplace returned a rate limit response (HTTP 429)."""

    pass


class SourceNotFoundError(SourceError):
    """The marketplace returned no usable title or identifier for the item."""

    def __init__(self, item_id: str, **kwargs):
        self.item_id = item_id
        super().__init__(
            message=f"Product not found or invalid response for item: {item_id}",
            **kwargs,
        )


# ─── Translation Errors ───────────────────────────────────────


class TranslationError(ImporterError):
    """The AI translation call failed or returned an unparseable payload."""

    pass


# ─── Image Errors ─────────────────────────────────────────────


class ImageProcessingError(ImporterError):
    """Error while downloading, classifying or transcoding an image."""

    pass


class BackgroundRemovalError(ImageProcessingError):
    """The background-removal service rejected or failed to process an image."""

    pass


# ─── Assembly Errors ──────────────────────────────────────────


class AssemblyError(ImporterError):
    """Error while assembling the final product record."""

    pass


class NoValidVariantsError(AssemblyError):
    """Every variant was dropped by colour filtering or deduplication."""

    def __init__(self, dropped: int = 0, **kwargs):
        self.dropped = dropped
        super().__init__(
            message="No valid variants after filtering - all colors were invalid",
            **kwargs,
        )


# ─── Publish Errors ───────────────────────────────────────────


class PublishError(ImporterError):
    """Error while creating the product on the commerce backend."""

    def __init__(self, message: str = "", status_code: int | None = None, **kwargs):
        self.status_code = status_code
        super().__init__(message=message, **kwargs)


class CommerceAuthError(PublishError):
    """Commerce admin token missing, expired or lacking scope."""

    pass


class TransientPublishError(PublishError):
    """
    Gateway or timeout class failure from the commerce backend.

    Safe to retry: the request never reached (or never completed in) the
    application layer.
    """

    pass


# ─── Resilience Errors ────────────────────────────────────────


class CircuitBreakerOpenError(ImporterError):
    """
    Circuit breaker is in OPEN state; requests are blocked until the cooldown ends.

    The source marketplace has had too many consecutive failures and is being
    bypassed until the cooldown expires.
    """

    def __init__(self, source: str, cooldown_remaining: float = 0, **kwargs):
        self.source = source
        self.cooldown_remaining = cooldown_remaining
        message = (
            f"Circuit breaker OPEN for '{source}'. "
            f"Retry in {cooldown_remaining:.0f} seconds."
        )
        super().__init__(message=message, **kwargs)
