"""
Gumroad product catalog configuration.

Maps Gumroad product permalinks (slugs) to credit amounts and plan tiers.
The catalog is built once at import and is read-only afterwards.
"""

from collections.abc import Iterable, Mapping
from types import MappingProxyType

from showroom_billing.exceptions import CatalogError
from showroom_billing.models.api import PlanCode
from showroom_billing.models.domain import Product


def build_catalog(products: Iterable[Product]) -> Mapping[str, Product]:
    """
    Build an immutable slug -> product mapping.

    Raises:
        CatalogError: If the table is empty or a slug appears twice
    """
    table: dict[str, Product] = {}
    for product in products:
        if product.slug in table:
            raise CatalogError(f"Duplicate product slug: {product.slug}")
        table[product.slug] = product

    if not table:
        raise CatalogError("Catalog has no products")

    return MappingProxyType(table)


# Product catalog (must match the Gumroad product permalinks)
PRODUCT_CATALOG: Mapping[str, Product] = build_catalog(
    [
        Product(
            slug="temelpaket",
            credits=60,
            plan_code=PlanCode.BASIC,
            name="Temel Paket",
        ),
        Product(
            slug="standartpaket",
            credits=180,
            plan_code=PlanCode.STANDARD,
            name="Standart Paket",
        ),
        Product(
            slug="premiumpaket",
            credits=500,
            plan_code=PlanCode.PREMIUM,
            name="Premium Paket",
        ),
    ]
)


def get_product(slug: str, catalog: Mapping[str, Product] = PRODUCT_CATALOG) -> Product | None:
    """
    Get product configuration by slug.

    Unknown slugs return None: Gumroad also pings for products outside this
    catalog and those must be acknowledged, not rejected.
    """
    return catalog.get(slug)

