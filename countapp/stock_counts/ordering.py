"""Category and product walk order for stock counts.

The order shown to a counter is resolved in three steps, first match wins:

1. the order saved on the count itself (manual drag-and-drop);
2. the order in which the same responsible walked their most recent
   finalized count;
3. alphabetical categories, alphabetical products within each category.

Orders are persisted and exchanged by display name for compatibility with
the counting screens, but everything in here orders product ids. Names are
only matched against products when a saved or inherited order is applied.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Sequence

from countapp.models import Product, StockCount, StockCountItem

from . import repository

UNCATEGORIZED = "Uncategorized"

SOURCE_SAVED = "saved"
SOURCE_INHERITED = "inherited"
SOURCE_ALPHABETICAL = "alphabetical"


@dataclass(frozen=True)
class OrderedProduct:
    product_id: int
    name: str
    code: str | None = None


@dataclass(frozen=True)
class OrderedCategory:
    name: str
    products: tuple[OrderedProduct, ...]

    @property
    def product_ids(self) -> list[int]:
        return [product.product_id for product in self.products]


@dataclass(frozen=True)
class CountOrder:
    source: str
    categories: tuple[OrderedCategory, ...]
    previous_stock_count_id: int | None = None

    def category_names(self) -> list[str]:
        return [category.name for category in self.categories]

    def product_names(self) -> dict[str, list[str]]:
        return {
            category.name: [product.name for product in category.products]
            for category in self.categories
        }


@dataclass(frozen=True)
class WalkOrder:
    categories: list[str] = field(default_factory=list)
    products: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.categories


@dataclass(frozen=True)
class PreviousOrderHint:
    has_order: bool
    categories: list[str]
    products: dict[str, list[str]]
    previous_stock_count_id: int | None

    def to_dict(self) -> dict[str, object]:
        return {
            "hasOrder": self.has_order,
            "categories": self.categories,
            "products": self.products,
            "previousStockCountId": self.previous_stock_count_id,
        }


def resolve_category_name(
    raw_value: object, categories_by_id: Mapping[int, str]
) -> str:
    """Map a product's category field to a display name.

    Numeric values are looked up as category ids first; anything else is used
    literally. A product is never left without a category.
    """

    if raw_value is None:
        return UNCATEGORIZED
    text = str(raw_value).strip()
    if not text:
        return UNCATEGORIZED
    if text.isdigit():
        category_id = int(text)
        if category_id in categories_by_id:
            return categories_by_id[category_id]
        return f"Category {category_id}"
    return text


def group_products(
    products: Iterable[Product], categories_by_id: Mapping[int, str]
) -> list[tuple[str, list[OrderedProduct]]]:
    """Group products by category, keeping encounter order at both levels."""

    groups: dict[str, list[OrderedProduct]] = {}
    seen: set[int] = set()
    for product in products:
        if product is None or product.id in seen:
            continue
        seen.add(product.id)
        category = resolve_category_name(product.stock_category, categories_by_id)
        groups.setdefault(category, []).append(
            OrderedProduct(product_id=product.id, name=product.name, code=product.code)
        )
    return list(groups.items())


def extract_walk_order(
    items: Iterable[StockCountItem], categories_by_id: Mapping[int, str]
) -> WalkOrder:
    """Category sequence and first-seen product names from items in creation order."""

    categories: list[str] = []
    products: dict[str, list[str]] = {}
    for item in items:
        product = item.product
        if product is None:
            continue
        category = resolve_category_name(product.stock_category, categories_by_id)
        if category not in products:
            categories.append(category)
            products[category] = []
        if product.name not in products[category]:
            products[category].append(product.name)
    return WalkOrder(categories=categories, products=products)


def _sort_key(name: str) -> tuple[str, str]:
    return (name.casefold(), name)


def alphabetical_order(
    groups: Sequence[tuple[str, list[OrderedProduct]]],
) -> list[OrderedCategory]:
    ordered = []
    for category, products in sorted(groups, key=lambda group: _sort_key(group[0])):
        ordered.append(
            OrderedCategory(
                name=category,
                products=tuple(
                    sorted(
                        products,
                        key=lambda product: (*_sort_key(product.name), product.product_id),
                    )
                ),
            )
        )
    return ordered


def _order_products(
    products: list[OrderedProduct], preferred_names: Sequence[str]
) -> tuple[OrderedProduct, ...]:
    remaining = list(products)
    ordered: list[OrderedProduct] = []
    for name in preferred_names:
        for index, product in enumerate(remaining):
            if product.name == name:
                ordered.append(remaining.pop(index))
                break
    ordered.extend(remaining)
    return tuple(ordered)


def apply_walk_order(
    groups: Sequence[tuple[str, list[OrderedProduct]]],
    category_order: Sequence[str],
    product_order: Mapping[str, Sequence[str]],
) -> list[OrderedCategory]:
    """Order groups by a saved walk; unknown entries follow in encounter order.

    Names in the walk that match no current product are dropped.
    """

    by_category = dict(groups)
    placed: set[str] = set()
    ordered: list[OrderedCategory] = []

    for category in category_order:
        if category in placed or category not in by_category:
            continue
        placed.add(category)
        ordered.append(
            OrderedCategory(
                name=category,
                products=_order_products(
                    by_category[category], product_order.get(category) or ()
                ),
            )
        )

    for category, products in groups:
        if category in placed:
            continue
        placed.add(category)
        ordered.append(
            OrderedCategory(
                name=category,
                products=_order_products(products, product_order.get(category) or ()),
            )
        )

    return ordered


def _count_products(stock_count: StockCount) -> list[Product]:
    items = repository.items_for_count(stock_count.id)
    if items:
        return [item.product for item in items if item.product is not None]
    return repository.products_for_unit(stock_count.unit_id)


def previous_walk_order(
    stock_count: StockCount, categories_by_id: Mapping[int, str] | None = None
) -> tuple[WalkOrder, StockCount | None]:
    previous = repository.previous_finalized_count(stock_count)
    if previous is None:
        return WalkOrder(), None
    if categories_by_id is None:
        categories_by_id = repository.category_names_by_id()
    items = repository.items_for_count(previous.id)
    return extract_walk_order(items, categories_by_id), previous


def previous_order_hint(stock_count: StockCount) -> PreviousOrderHint:
    walk, previous = previous_walk_order(stock_count)
    if previous is None or walk.is_empty:
        return PreviousOrderHint(
            has_order=False,
            categories=[],
            products={},
            previous_stock_count_id=None,
        )
    return PreviousOrderHint(
        has_order=True,
        categories=walk.categories,
        products=walk.products,
        previous_stock_count_id=previous.id,
    )


def compute_order(stock_count: StockCount) -> CountOrder:
    categories_by_id = repository.category_names_by_id()
    groups = group_products(_count_products(stock_count), categories_by_id)

    if stock_count.has_saved_order:
        return CountOrder(
            source=SOURCE_SAVED,
            categories=tuple(
                apply_walk_order(
                    groups,
                    stock_count.category_order or [],
                    stock_count.product_order or {},
                )
            ),
        )

    walk, previous = previous_walk_order(stock_count, categories_by_id)
    if previous is not None and not walk.is_empty:
        return CountOrder(
            source=SOURCE_INHERITED,
            categories=tuple(apply_walk_order(groups, walk.categories, walk.products)),
            previous_stock_count_id=previous.id,
        )

    return CountOrder(source=SOURCE_ALPHABETICAL, categories=tuple(alphabetical_order(groups)))
