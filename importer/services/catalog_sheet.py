"""
Candidate catalog spreadsheet.

The buying team keeps candidate listings in an .xlsx export with one row per
marketplace item. Batch imports pick a brand's rows from it.

Expected columns: Item ID, Shop Name, Title, Inventory, Price,
Main Image URL, Shopify Item ID (blank until imported).
"""

import logging
from dataclasses import dataclass
from pathlib import Path

import pandas as pd

from importer.core.exceptions import ImporterError

logger = logging.getLogger(__name__)

COL_ITEM_ID = "Item ID"
COL_SHOP_NAME = "Shop Name"
COL_TITLE = "Title"
COL_INVENTORY = "Inventory"
COL_PRICE = "Price"
COL_MAIN_IMAGE = "Main Image URL"
COL_SHOPIFY_ID = "Shopify Item ID"

REQUIRED_COLUMNS = (COL_ITEM_ID, COL_SHOP_NAME)
UNKNOWN_SHOP = "Unknown"


@dataclass
class CatalogRow:
    """One candidate listing from the spreadsheet."""

    item_id: str
    shop_name: str
    title: str = ""
    inventory: int | None = None
    price: float | None = None
    main_image_url: str = ""
    shopify_item_id: str = ""


def _clean_id(value) -> str:
    """Spreadsheet IDs arrive as text, ints or floats like ``846881782232.0``."""
    if value is None or pd.isna(value):
        return ""
    text = str(value).strip()
    if text.endswith(".0") and text[:-2].isdigit():
        text = text[:-2]
    return text


def _optional(value):
    return None if value is None or pd.isna(value) else value


def _coerce_numeric(df: pd.DataFrame, columns: tuple[str, ...]) -> pd.DataFrame:
    """Parse numeric columns; cells like ``N/A`` become blank instead of failing the load."""
    df = df.copy()
    for column in columns:
        if column not in df.columns:
            continue
        parsed = pd.to_numeric(df[column], errors="coerce")
        unparsed = int((parsed.isna() & df[column].notna()).sum())
        if unparsed:
            logger.warning(f"Ignoring {unparsed} non-numeric value(s) in '{column}'")
        df[column] = parsed
    return df


class CatalogSheet:
    """
    In-memory view of the candidate spreadsheet.

    Usage:
        sheet = CatalogSheet.load("Products.xlsx")
        for shop, count in sheet.brand_counts():
            ...
        rows = sheet.items_for_brand("Y OFFICIAL", limit=20)
    """

    def __init__(self, rows: list[CatalogRow]):
        self._rows = rows

    @classmethod
    def from_dataframe(cls, df: pd.DataFrame) -> "CatalogSheet":
        missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
        if missing:
            raise ImporterError(
                f"Catalog sheet is missing columns: {', '.join(missing)}",
                details={"columns": list(df.columns)},
            )

        df = _coerce_numeric(df, (COL_INVENTORY, COL_PRICE))

        rows = []
        for record in df.to_dict(orient="records"):
            item_id = _clean_id(record.get(COL_ITEM_ID))
            if not item_id:
                continue
            shop = _optional(record.get(COL_SHOP_NAME))
            inventory = _optional(record.get(COL_INVENTORY))
            price = _optional(record.get(COL_PRICE))
            rows.append(
                CatalogRow(
                    item_id=item_id,
                    shop_name=str(shop).strip() if shop else UNKNOWN_SHOP,
                    title=str(_optional(record.get(COL_TITLE)) or ""),
                    inventory=int(inventory) if inventory is not None else None,
                    price=float(price) if price is not None else None,
                    main_image_url=str(_optional(record.get(COL_MAIN_IMAGE)) or ""),
                    shopify_item_id=_clean_id(record.get(COL_SHOPIFY_ID)),
                )
            )
        return cls(rows)

    @classmethod
    def load(cls, path: Path | str) -> "CatalogSheet":
        """
        Read the first worksheet of an .xlsx file.

        Raises:
            ImporterError: If the file is missing or lacks required columns.
        """
        path = Path(path)
        if not path.is_file():
            raise ImporterError(f"Catalog sheet not found: {path}")

        df = pd.read_excel(
            path,
            sheet_name=0,
            engine="openpyxl",
            dtype={COL_ITEM_ID: str, COL_SHOPIFY_ID: str},
        )
        sheet = cls.from_dataframe(df)
        logger.info(f"Loaded {len(sheet)} catalog rows from {path}")
        return sheet

    def __len__(self) -> int:
        return len(self._rows)

    @property
    def rows(self) -> list[CatalogRow]:
        return list(self._rows)

    def brand_counts(self) -> list[tuple[str, int]]:
        """``(shop name, row count)`` pairs, most rows first."""
        counts: dict[str, int] = {}
        for row in self._rows:
            counts[row.shop_name] = counts.get(row.shop_name, 0) + 1
        return sorted(counts.items(), key=lambda pair: pair[1], reverse=True)

    def items_for_brand(self, brand: str, limit: int | None = None) -> list[CatalogRow]:
        """Rows whose shop name matches exactly, in sheet order."""
        matches = [row for row in self._rows if row.shop_name == brand]
        return matches[:limit] if limit is not None else matches
