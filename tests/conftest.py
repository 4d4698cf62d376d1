"""
Shared test fixtures for the importer test suite.
"""

import pytest

from importer.core.models import (
    Gender,
    GeneratedCopy,
    Listing,
    ProcessedImage,
    ProcessedImageRef,
    Sku,
    SkuProperties,
    TranslatedProduct,
    TranslatedVariant,
)

CDN = "https://img.alicdn.com/imgextra/i1"


@pytest.fixture
def sample_raw_response() -> dict:
    """A realistic Taobao Global /product/get body (sku_list shape)."""
    return {
        "code": "0",
        "data": {
            "item_id": 846881782232,
            "title": "泡沫花市 秋冬新款 羊驼毛开衫 宽松针织外套",
            "desc": (
                '<p><img src="//img.alicdn.com/imgextra/i1/size_chart.jpg"/>'
                '<img src="https://img.alicdn.com/spacer.gif"/>'
                '<img data-src="https://img.alicdn.com/imgextra/i2/model.jpg"/>'
                '<img src="https://example.com/banner.jpg"/></p>'
            ),
            "price": "29900",
            "shop_name": "Flowery Bubble 泡沫花市",
            "category_id": 50000697,
            "pic_urls": [
                f"{CDN}/main.jpg",
                "//img.alicdn.com/imgextra/i1/back.jpg",
            ],
            "sku_list": [
                {
                    "sku_id": 5001,
                    "price": 29900,
                    "quantity": 3,
                    "pic_url": f"{CDN}/gray.jpg",
                    "properties": [
                        {"prop_name": "颜色分类", "value_name": "灰-现货"},
                        {"prop_name": "尺码", "value_name": "S"},
                    ],
                },
                {
                    "sku_id": 5002,
                    "price": 29900,
                    "quantity": 5,
                    "pic_url": f"{CDN}/gray.jpg",
                    "properties": [
                        {"prop_name": "颜色分类", "value_name": "灰-现货"},
                        {"prop_name": "尺码", "value_name": "M"},
                    ],
                },
                {
                    "sku_id": 5003,
                    "price": 31900,
                    "quantity": 2,
                    "pic_url": f"{CDN}/black.jpg",
                    "properties": [
                        {"prop_name": "颜色分类", "value_name": "黑色"},
                        {"prop_name": "尺码", "value_name": "M"},
                    ],
                },
            ],
        },
    }


@pytest.fixture
def sample_listing() -> Listing:
    """A normalized listing with two colours and a size-guide sentinel row."""
    return Listing(
        item_id="846881782232",
        title="泡沫花市 秋冬新款 羊驼毛开衫",
        description="<p>羊驼毛开衫</p>",
        description_images=[f"{CDN}/size_chart.jpg"],
        price=299.0,
        images=[f"{CDN}/main.jpg", f"{CDN}/back.jpg"],
        skus=[
            Sku(
                sku_id="5001",
                price=299.0,
                stock=3,
                properties=SkuProperties(color="灰-现货", size="S"),
                image=f"{CDN}/gray.jpg",
            ),
            Sku(
                sku_id="5002",
                price=299.0,
                stock=5,
                properties=SkuProperties(color="灰-现货", size="M"),
                image=f"{CDN}/gray.jpg",
            ),
            Sku(
                sku_id="5003",
                price=319.0,
                stock=2,
                properties=SkuProperties(color="黑色", size="M"),
                image=f"{CDN}/black.jpg",
            ),
            Sku(
                sku_id="5004",
                price=0.0,
                stock=0,
                properties=SkuProperties(color="尺码推荐 联系客服", size="均码"),
            ),
        ],
        shop_name="Flowery Bubble 泡沫花市",
    )


def make_variant(
    sku_id: str,
    size: str,
    color: str,
    stock: int = 1,
    image: str | None = None,
    standard: str | None = None,
    price: int = 84,
) -> TranslatedVariant:
    return TranslatedVariant(
        sku_id=sku_id,
        size=size,
        color=color,
        color_standardized=standard or color,
        price_source=299.0,
        price_target=price,
        stock=stock,
        image=image,
    )


@pytest.fixture
def sample_translated(sample_listing: Listing) -> TranslatedProduct:
    """Translation of sample_listing as the AI service would build it."""
    return TranslatedProduct(
        title="Relaxed Alpaca Knit Cardigan",
        description="Loose-fit alpaca wool cardigan.",
        vendor="Flowery Bubble",
        product_type="Cardigan",
        gender=Gender.FEMALE,
        variants=[
            make_variant("5001", "S", "Gray", stock=3, image=f"{CDN}/gray.jpg"),
            make_variant("5002", "M", "Gray", stock=5, image=f"{CDN}/gray.jpg"),
            make_variant("5003", "M", "Black", stock=2, image=f"{CDN}/black.jpg", price=90),
            make_variant("5004", "One Size", "", stock=0, standard="Multicolor"),
        ],
        original=sample_listing,
    )


@pytest.fixture
def sample_copy() -> GeneratedCopy:
    return GeneratedCopy(
        title="Ribbed Alpaca Cardigan",
        body_html="<p>Flowery Bubble's relaxed cardigan in alpaca blend.</p>",
    )


@pytest.fixture
def sample_images() -> list[ProcessedImage]:
    """Ordered images: one shared, then the Gray and Black swatches."""
    return [
        ProcessedImage(
            original_url=f"{CDN}/main.jpg",
            processed=ProcessedImageRef.from_url(f"{CDN}/main.jpg"),
            position=1,
        ),
        ProcessedImage(
            original_url=f"{CDN}/gray.jpg",
            processed=ProcessedImageRef.from_bytes(b"\x89PNG-gray"),
            position=2,
            variant_colors=["Gray"],
        ),
        ProcessedImage(
            original_url=f"{CDN}/black.jpg",
            processed=ProcessedImageRef.from_url(f"{CDN}/black.jpg"),
            position=3,
            variant_colors=["Black"],
        ),
    ]


@pytest.fixture
def variant_factory():
    """Build TranslatedVariant rows: ``variant_factory("1", "S", "Gray", image=...)``."""
    return make_variant
