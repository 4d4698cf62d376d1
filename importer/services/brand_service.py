"""
Brand context documents for copy generation.

Each curated brand may have a markdown profile in ``brands/<slug>.md``
("Flowery Bubble 泡沫花市" → ``flowery-bubble.md``). Only the sections that
help a copywriter are passed to the model.
"""

import asyncio
import logging
import re
from pathlib import Path

from importer.config import Settings

logger = logging.getLogger(__name__)

SUMMARY_SECTIONS = (
    "Brand Summary",
    "Aesthetic & Style",
    "Materials & Quality",
    "Price Positioning",
    "Target Customer",
    "Brand Voice for Copy",
)

NO_CONTEXT = "No brand context available."

_CJK = re.compile(r"[\u4e00-\u9fff]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_SECTION_HEADER = re.compile(r"^##\s+(.+)$")


def brand_slug(name: str) -> str:
    """Lower-case, drop CJK characters, join the rest with single hyphens."""
    slug = _CJK.sub("", (name or "").lower())
    slug = _NON_ALNUM.sub("-", slug)
    return slug.strip("-")


def extract_summary(full_context: str) -> str:
    """
    Keep only the copy-relevant ``## `` sections of a brand document.

    Capture stops at a top-level ``# `` heading or a ``---`` rule.
    """
    if not full_context:
        return NO_CONTEXT

    result: list[str] = []
    capturing = False

    for line in full_context.splitlines():
        header = _SECTION_HEADER.match(line)
        if header:
            capturing = any(section in header.group(1) for section in SUMMARY_SECTIONS)
            if capturing:
                result.append(line)
            continue

        if capturing:
            if line.startswith("# ") or line.startswith("---"):
                capturing = False
                continue
            result.append(line)

    return "\n".join(result).strip() or NO_CONTEXT


class BrandContextService:
    """Loads brand documents from a directory. A missing document is not an error."""

    def __init__(self, brands_dir: Path | str = "brands"):
        self._brands_dir = Path(brands_dir)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BrandContextService":
        return cls(brands_dir=settings.brands_dir)

    def path_for(self, vendor: str) -> Path:
        return self._brands_dir / f"{brand_slug(vendor)}.md"

    def load_sync(self, vendor: str) -> str:
        slug = brand_slug(vendor)
        if not slug:
            logger.info(f"No usable brand slug for vendor {vendor!r}")
            return ""

        path = self.path_for(vendor)
        if not path.is_file():
            logger.info(f"No brand doc for '{vendor}' (tried {path.name})")
            return ""

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read brand doc {path}: {e}")
            return ""

        logger.info(f"Loaded brand context for '{vendor}' ({len(content)} chars)")
        return content

    async def load(self, vendor: str) -> str:
        """Full brand document text, or ``""`` when there is none."""
        return await asyncio.to_thread(self.load_sync, vendor)

    async def load_summary(self, vendor: str) -> str:
        """Summary sections ready for the copy prompt, or ``""`` when there is no doc."""
        content = await self.load(vendor)
        return extract_summary(content) if content else ""
