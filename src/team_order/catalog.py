"""Menu catalog contract.

Menus are produced by an external parser; this module only defines the
read-only records and a catalog that loads already-structured data from a
YAML or JSON file::

    restaurants:
      - id: 1
        name: Noodle House
        menu:
          - name: Noodles
            items:
              - {id: 101, name: Beef Noodles, price: 120}
    drink_shops:
      - id: 1
        name: Tea Stand
        menu: [...]
        toppings:
          - {name: Pearls, price: 10}

Restaurant and drink shop ids live in separate namespaces.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, Protocol

import yaml

from team_order.session.errors import ValidationError
from team_order.session.models import StoreKind, to_price

_SECTION_KIND = {
    "restaurants": StoreKind.RESTAURANT,
    "drink_shops": StoreKind.DRINK,
}


class CatalogError(Exception):
    """Raised when a catalog file cannot be read or is malformed."""


@dataclass(frozen=True)
class MenuItem:
    id: int
    name: str
    price: Decimal


@dataclass(frozen=True)
class Topping:
    name: str
    price: Decimal


@dataclass(frozen=True)
class MenuCategory:
    name: str
    items: tuple[MenuItem, ...] = ()


@dataclass(frozen=True)
class Store:
    id: int
    name: str
    kind: StoreKind
    menu: tuple[MenuCategory, ...] = ()
    toppings: tuple[Topping, ...] = ()

    def find_item(self, item_id: int) -> Optional[MenuItem]:
        for category in self.menu:
            for item in category.items:
                if item.id == item_id:
                    return item
        return None

    def find_topping(self, name: str) -> Optional[Topping]:
        for topping in self.toppings:
            if topping.name == name:
                return topping
        return None


class MenuCatalog(Protocol):
    """Read-only source of stores and their menus."""

    def get_store(self, kind: StoreKind, store_id: int) -> Optional[Store]: ...

    def stores(self, kind: StoreKind) -> list[Store]: ...


def _store_from_dict(data: dict[str, Any], kind: StoreKind) -> Store:
    return Store(
        id=int(data["id"]),
        name=str(data["name"]),
        kind=kind,
        menu=tuple(
            MenuCategory(
                name=str(category.get("name", "")),
                items=tuple(
                    MenuItem(id=int(item["id"]), name=str(item["name"]), price=to_price(item["price"]))
                    for item in category.get("items") or ()
                ),
            )
            for category in data.get("menu") or ()
        ),
        toppings=tuple(
            Topping(name=str(t["name"]), price=to_price(t["price"])) for t in data.get("toppings") or ()
        ),
    )


class StaticMenuCatalog:
    """In-memory catalog built once per session setup."""

    def __init__(self, stores: list[Store] | tuple[Store, ...] = ()) -> None:
        self._stores: dict[tuple[StoreKind, int], Store] = {}
        for store in stores:
            self._stores[(store.kind, store.id)] = store

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StaticMenuCatalog:
        stores: list[Store] = []
        for section, kind in _SECTION_KIND.items():
            for entry in data.get(section) or ():
                stores.append(_store_from_dict(entry, kind))
        return cls(stores)

    @classmethod
    def from_file(cls, path: Path) -> StaticMenuCatalog:
        try:
            text = path.read_text(encoding="utf-8")
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
            raise CatalogError(f"Cannot read catalog {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise CatalogError(f"Catalog {path} must contain a mapping")
        try:
            return cls.from_dict(data)
        except (KeyError, TypeError, ValueError, ValidationError) as exc:
            raise CatalogError(f"Malformed catalog {path}: {exc}") from exc

    def get_store(self, kind: StoreKind, store_id: int) -> Optional[Store]:
        return self._stores.get((kind, store_id))

    def stores(self, kind: StoreKind) -> list[Store]:
        return [store for (store_kind, _), store in self._stores.items() if store_kind == kind]
