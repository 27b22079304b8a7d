"""
resolver.py — Per-SKU Stock Resolution against the Inventory Service

This module turns one inventory stock query into a controlled outcome for a SKU:

    • FOUND          → the resources holding stock, in discovery order
    • SKU_NOT_FOUND  → the inventory service does not know the SKU
    • NO_STOCK       → the SKU exists but no resource has units
    • ERROR          → the lookup failed; the message is rendered into the note

Failures are contained per SKU: a broken lookup never aborts the whole order.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .auth import TokenUnavailableError
from .models import InventoryData, InventoryStockItem
from .sku import normalize_sku
from .text_utils import fold

log = logging.getLogger(__name__)

DEPOSITO = "deposito"

# failures of one lookup, including the inventory token flow and its token store
LOOKUP_ERRORS = (httpx.HTTPError, ValidationError, ValueError, TokenUnavailableError, SQLAlchemyError)


def is_deposito_name(name: Optional[str]) -> bool:
    """True for the primary warehouse, ignoring case and accents ("Depósito")."""
    return fold(name or "") == DEPOSITO


class SkuOutcome(str, Enum):
    FOUND = "found"
    SKU_NOT_FOUND = "sku_not_found"
    NO_STOCK = "no_stock"
    ERROR = "error"


@dataclass(frozen=True)
class ResourceStock:
    """Units of one SKU available at one resource (snapshot, not reserved)."""
    resource_id: str
    resource_name: str
    quantity: float
    total_stock: float = 0.0

    @property
    def is_deposito(self) -> bool:
        return is_deposito_name(self.resource_name)


@dataclass(frozen=True)
class SkuResolution:
    """
    Outcome of one SKU lookup.

    `ranked_by_product` is set when `stocks` were re-ordered by the parent
    product's total stock per resource; that order then decides the pick.
    """
    sku: str
    outcome: SkuOutcome
    stocks: Tuple[ResourceStock, ...] = ()
    display_title: Optional[str] = None
    product_id: Optional[str] = None
    error: Optional[str] = None
    ranked_by_product: bool = False


class ResourceCatalog:
    """
    In-memory view of one inventory query response.

    Resource ids are compared case-insensitively, as the inventory service
    does not guarantee a consistent casing between the resource list and
    the per-SKU stock entries.
    """

    def __init__(self, data: InventoryData):
        self._data = data
        self._resources: Dict[str, Tuple[str, float]] = {}
        for resource in data.resources:
            self._resources[resource.resource_id.lower()] = (resource.name or "", resource.total_stock)

    def resource_name(self, resource_id: str) -> str:
        name, _ = self._resources.get(resource_id.lower(), ("", 0.0))
        return name or resource_id

    def total_stock(self, resource_id: str) -> float:
        _, total = self._resources.get(resource_id.lower(), ("", 0.0))
        return total

    def stock_items_for(self, sku: str) -> List[InventoryStockItem]:
        key = sku.lower()
        return [item for item in self._data.stock if item.sku and item.sku.lower() == key]

    def stocks_for_sku(self, sku: str) -> List[ResourceStock]:
        """Resources with strictly positive quantity for `sku`, in discovery order."""
        quantities: Dict[str, float] = {}
        order: List[str] = []
        for item in self.stock_items_for(sku):
            for detail in item.stock:
                if detail.quantity <= 0 or not detail.resource_id.strip():
                    continue
                rid = detail.resource_id.lower()
                if rid not in quantities:
                    order.append(detail.resource_id)
                    quantities[rid] = 0.0
                quantities[rid] += detail.quantity
        return [
            ResourceStock(
                resource_id=rid,
                resource_name=self.resource_name(rid),
                quantity=quantities[rid.lower()],
                total_stock=self.total_stock(rid),
            )
            for rid in order
        ]

    def product_id(self, sku: str) -> Optional[str]:
        for item in self.stock_items_for(sku) or self._data.stock:
            if item.product_id and item.product_id.strip():
                return item.product_id
        return None

    def display_title(self, sku: str) -> Optional[str]:
        """Product name followed by its variant value names, e.g. "Corpiño Negro 95"."""
        items = self.stock_items_for(sku)
        if not items:
            return None
        item = items[0]
        product_name = self._data.products.get(item.product_id or "", "").strip()
        if not product_name:
            return None
        names_by_type = {vt.type_name: vt.names for vt in self._data.variants}
        parts = [product_name]
        for variant in item.variants:
            value = names_by_type.get(variant.variant_type, {}).get(variant.variant_id, "").strip()
            if value:
                parts.append(value)
        return " ".join(parts)


class AllocationResolver:
    """
    Resolves SKUs to the resources holding their stock.

    Args:
        inventory: Client exposing `query_stock_by_sku(sku)` and
            `query_stock_by_product(product_id)`, both returning an
            `InventoryResponse` or None when the inventory has no match.
        resolve_by_product (bool): When several non-Deposito resources hold
            stock, re-query by the parent product id and order the candidates
            by the product's total stock per resource. The allocation engine
            then takes from the resource with the highest total first.
    """

    def __init__(self, inventory, resolve_by_product: bool = False):
        self._inventory = inventory
        self._resolve_by_product = resolve_by_product

    async def resolve(self, raw_sku: str) -> SkuResolution:
        sku = normalize_sku(raw_sku)
        try:
            response = await self._inventory.query_stock_by_sku(sku)
        except LOOKUP_ERRORS as e:
            log.warning(f"[SKU: {sku}] Consulta de stock fallida: {e}")
            return SkuResolution(sku=sku, outcome=SkuOutcome.ERROR, error=f"stock no disponible para {sku}")

        if response is None or response.data is None:
            log.info(f"[SKU: {sku}] SKU inexistente en inventario.")
            return SkuResolution(sku=sku, outcome=SkuOutcome.SKU_NOT_FOUND)

        catalog = ResourceCatalog(response.data)
        if not catalog.stock_items_for(sku):
            log.info(f"[SKU: {sku}] La respuesta de inventario no contiene el SKU.")
            return SkuResolution(sku=sku, outcome=SkuOutcome.SKU_NOT_FOUND)

        title = catalog.display_title(sku)
        product_id = catalog.product_id(sku)
        stocks = catalog.stocks_for_sku(sku)
        if not stocks:
            return SkuResolution(
                sku=sku, outcome=SkuOutcome.NO_STOCK, display_title=title, product_id=product_id
            )

        ranked = False
        ambiguous = len(stocks) >= 2 and not any(s.is_deposito for s in stocks)
        if self._resolve_by_product and ambiguous and product_id:
            stocks, ranked = await self._rank_by_product(sku, product_id, stocks)

        return SkuResolution(
            sku=sku,
            outcome=SkuOutcome.FOUND,
            stocks=tuple(stocks),
            display_title=title,
            product_id=product_id,
            ranked_by_product=ranked,
        )

    async def _rank_by_product(self, sku, product_id, stocks):
        try:
            response = await self._inventory.query_stock_by_product(product_id)
        except LOOKUP_ERRORS as e:
            log.warning(f"[SKU: {sku}] Consulta por producto {product_id} fallida, se mantiene el orden: {e}")
            return stocks, False
        if response is None or response.data is None:
            return stocks, False

        catalog = ResourceCatalog(response.data)
        ranked = [
            ResourceStock(s.resource_id, s.resource_name, s.quantity, catalog.total_stock(s.resource_id))
            for s in stocks
        ]
        # sorted() is stable: equal totals keep discovery order
        return sorted(ranked, key=lambda s: -s.total_stock), True
