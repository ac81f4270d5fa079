"""Default menu and customization catalog used to seed or reset the store.

The catalog is an explicit resource: :func:`pizzeria_ledger.cascade.reset_all_data`
and the workbook bootstrap both receive it as an argument, and deployments can
point ``[Catalog] File`` in ``config.ini`` at their own JSON document.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from . import log
from .constants import MenuCategory
from .data_manager import as_decimal
from .errors import ValidationError


@dataclass(frozen=True)
class CatalogMenuItem:
    name: str
    price: Decimal
    cost: Decimal
    category: MenuCategory


@dataclass(frozen=True)
class CatalogCustomization:
    name: str
    price: Decimal
    cost: Decimal


@dataclass(frozen=True)
class Catalog:
    """Seed data for the ``menuItems`` and ``customizations`` collections."""

    menu_items: Tuple[CatalogMenuItem, ...]
    customizations: Tuple[CatalogCustomization, ...]

    def menu_item_documents(self) -> list[Dict[str, Any]]:
        return [
            {"name": item.name, "price": item.price, "cost": item.cost, "category": item.category.value}
            for item in self.menu_items
        ]

    def customization_documents(self) -> list[Dict[str, Any]]:
        return [{"name": item.name, "price": item.price, "cost": item.cost} for item in self.customizations]


DEFAULT_CATALOG = Catalog(
    menu_items=(
        CatalogMenuItem("Margherita Pizza", Decimal("22.00"), Decimal("6.20"), MenuCategory.PIZZA),
        CatalogMenuItem("Pepperoni Pizza", Decimal("26.00"), Decimal("7.80"), MenuCategory.PIZZA),
        CatalogMenuItem("Hawaiian Pizza", Decimal("25.00"), Decimal("7.40"), MenuCategory.PIZZA),
        CatalogMenuItem("Veggie Supreme Pizza", Decimal("24.00"), Decimal("7.10"), MenuCategory.PIZZA),
        CatalogMenuItem("Soda", Decimal("3.00"), Decimal("0.90"), MenuCategory.BEVERAGE),
        CatalogMenuItem("Sparkling Water", Decimal("3.50"), Decimal("1.00"), MenuCategory.BEVERAGE),
        CatalogMenuItem("Garlic Bread", Decimal("7.00"), Decimal("1.60"), MenuCategory.OTHER),
    ),
    customizations=(
        CatalogCustomization("Extra Cheese", Decimal("2.50"), Decimal("0.80")),
        CatalogCustomization("Mushrooms", Decimal("1.50"), Decimal("0.40")),
        CatalogCustomization("Jalapenos", Decimal("1.00"), Decimal("0.25")),
        CatalogCustomization("Gluten-Free Crust", Decimal("4.00"), Decimal("1.50")),
    ),
)


def parse_catalog(payload: Mapping[str, Any]) -> Catalog:
    """Build a :class:`Catalog` from ``{"menuItems": [...], "customizations": [...]}``.

    Raises:
        ValidationError: If an entry lacks a name, carries a non-numeric or
            negative amount, or names an unknown menu category.
    """

    menu_items = []
    for raw in payload.get("menuItems", []):
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError("Catalog menu item requires a name")
        try:
            category = MenuCategory(raw.get("category", MenuCategory.OTHER.value))
        except ValueError as exc:
            raise ValidationError(f"Unknown menu category for '{name}': {raw.get('category')!r}") from exc
        menu_items.append(
            CatalogMenuItem(
                name=name,
                price=_non_negative(raw.get("price"), field=f"{name}.price"),
                cost=_non_negative(raw.get("cost"), field=f"{name}.cost"),
                category=category,
            )
        )

    customizations = []
    for raw in payload.get("customizations", []):
        name = str(raw.get("name") or "").strip()
        if not name:
            raise ValidationError("Catalog customization requires a name")
        customizations.append(
            CatalogCustomization(
                name=name,
                price=_non_negative(raw.get("price"), field=f"{name}.price"),
                cost=_non_negative(raw.get("cost"), field=f"{name}.cost"),
            )
        )
    return Catalog(menu_items=tuple(menu_items), customizations=tuple(customizations))


def _non_negative(raw: object, *, field: str) -> Decimal:
    value = as_decimal(raw, field=field)
    if value < 0:
        raise ValidationError(f"Field '{field}' must be zero or positive")
    return value


def load_catalog(catalog_file: Optional[Path]) -> Catalog:
    """Read a JSON catalog, or return :data:`DEFAULT_CATALOG` when unset.

    Raises:
        FileNotFoundError: If ``catalog_file`` is set but missing.
        ValidationError: If the file is not valid catalog JSON.
    """

    if catalog_file is None:
        return DEFAULT_CATALOG
    path = Path(catalog_file).expanduser().resolve()
    if not path.exists():
        raise FileNotFoundError(f"Catalog file not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Catalog file is not valid JSON: {exc}") from exc
    if not isinstance(payload, Mapping):
        raise ValidationError("Catalog file must contain a JSON object")
    catalog = parse_catalog(payload)
    log.info(
        "Loaded catalog '%s' (%d menu items, %d customizations)",
        path,
        len(catalog.menu_items),
        len(catalog.customizations),
    )
    return catalog
