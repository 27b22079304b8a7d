"""
allocation.py — Quantity Splitting across Warehouses

This module decides which warehouse ("resource") fulfills each unit of an
order line, and consolidates every order of a pack against one shared stock
budget so the same unit is never assigned twice.

Rules:
    1. Candidates are ordered by: Deposito first, then more units available,
       then discovery order.
    2. Each candidate gives `min(remaining, floor(available))` units until the
       line is covered or candidates run out.
    3. Any remainder is labeled "Sin stock" (SKU known) or "Sin asignación"
       (SKU unknown or missing); failed lookups are labeled "ERROR: ...".
    4. Fairness: when no Deposito holds stock and two or more other resources
       do, the starting candidate rotates per parent product, so variants of
       one product spread across warehouses.
    5. Product ranking: a resolution ranked by the parent product's total
       stock is walked richest resource first, without rotation.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .models import Order, OrderLine
from .resolver import AllocationResolver, ResourceStock, SkuOutcome, SkuResolution
from .sku import normalize_sku

log = logging.getLogger(__name__)

SIN_ASIGNACION = "Sin asignación"
SIN_STOCK = "Sin stock"
ERROR_PREFIX = "ERROR: "


@dataclass(frozen=True)
class AllocationSegment:
    resource_name: str
    quantity: int


@dataclass(frozen=True)
class LineAllocation:
    """Segments covering one order line plus the part no resource could cover."""
    segments: Tuple[AllocationSegment, ...] = ()
    remainder: int = 0
    remainder_label: Optional[str] = None

    @property
    def allocated(self) -> int:
        return sum(s.quantity for s in self.segments)


@dataclass(frozen=True)
class AllocationEntry:
    """Flattened allocation row consumed by the note composer."""
    product_label: str
    assignment_name: str
    quantity: int


class StockPool:
    """
    Remaining units per (SKU, resource) during one allocation pass.

    A resource's budget is seeded from the first resolution that mentions it
    and only decreases afterwards.
    """

    def __init__(self):
        self._available: Dict[Tuple[str, str], float] = {}

    def available(self, sku: str, stock: ResourceStock) -> float:
        key = (sku.lower(), stock.resource_id.lower())
        return self._available.setdefault(key, stock.quantity)

    def take(self, sku: str, stock: ResourceStock, quantity: int):
        key = (sku.lower(), stock.resource_id.lower())
        self._available[key] = self.available(sku, stock) - quantity


class AllocationEngine:
    """
    Splits order lines across resources for a single allocation pass.

    The stock pool and the round-robin counters live on the instance; create
    one engine per pass so nothing leaks between invocations.
    """

    def __init__(self, pool: Optional[StockPool] = None, counters: Optional[Dict[str, int]] = None):
        self.pool = pool if pool is not None else StockPool()
        self.counters = counters if counters is not None else {}

    def allocate(self, line: OrderLine, resolution: Optional[SkuResolution]) -> LineAllocation:
        """
        Allocates `line.quantity` units using the stock in `resolution`.

        Args:
            line (OrderLine): The order line to cover.
            resolution (SkuResolution | None): None when the line carries no SKU.

        Returns:
            LineAllocation: Segments in take order and the labeled remainder.
        """
        wanted = line.quantity
        if resolution is None or resolution.outcome == SkuOutcome.SKU_NOT_FOUND:
            return LineAllocation(remainder=wanted, remainder_label=SIN_ASIGNACION)
        if resolution.outcome == SkuOutcome.ERROR:
            return LineAllocation(remainder=wanted, remainder_label=ERROR_PREFIX + (resolution.error or "desconocido"))
        if resolution.outcome == SkuOutcome.NO_STOCK:
            return LineAllocation(remainder=wanted, remainder_label=SIN_STOCK)

        candidates = self._ordered_candidates(resolution)
        remaining = wanted
        segments = []
        for stock, available in candidates:
            if remaining <= 0:
                break
            taken = min(remaining, available)
            if taken <= 0:
                continue
            self.pool.take(resolution.sku, stock, taken)
            segments.append(AllocationSegment(stock.resource_name, taken))
            remaining -= taken

        if remaining > 0:
            return LineAllocation(tuple(segments), remaining, SIN_STOCK)
        return LineAllocation(tuple(segments))

    def _ordered_candidates(self, resolution: SkuResolution) -> List[Tuple[ResourceStock, int]]:
        indexed = []
        for index, stock in enumerate(resolution.stocks):
            available = math.floor(self.pool.available(resolution.sku, stock))
            if available >= 1:
                indexed.append((index, stock, available))

        if resolution.ranked_by_product:
            # product ranking picks the richest resource overall; no rotation
            indexed.sort(key=lambda c: (not c[1].is_deposito, -c[1].total_stock, -c[2], c[0]))
            return [(stock, available) for _, stock, available in indexed]

        indexed.sort(key=lambda c: (not c[1].is_deposito, -c[2], c[0]))
        ordered = [(stock, available) for _, stock, available in indexed]

        if len(ordered) >= 2 and not any(stock.is_deposito for stock, _ in ordered):
            key = resolution.product_id or resolution.sku
            start = self.counters.get(key, 0) % len(ordered)
            self.counters[key] = (start + 1) % len(ordered)
            ordered = ordered[start:] + ordered[:start]
        return ordered

    def entries_for(self, line: OrderLine, resolution: Optional[SkuResolution]) -> List[AllocationEntry]:
        allocation = self.allocate(line, resolution)
        label = (resolution.display_title if resolution else None) or line.title
        entries = [AllocationEntry(label, s.resource_name, s.quantity) for s in allocation.segments]
        if allocation.remainder > 0:
            entries.append(AllocationEntry(label, allocation.remainder_label, allocation.remainder))
        return entries


def _line_sku(line: OrderLine) -> Optional[str]:
    if not line.seller_sku or not line.seller_sku.strip():
        return None
    return normalize_sku(line.seller_sku)


class PackConsolidator:
    """
    Allocates every line of a group of orders against one shared stock pool.

    Each distinct SKU is resolved once for the whole group, with all lookups
    running concurrently before any allocation starts. Lines are then walked
    in order-then-item order; earlier lines consume stock first.
    """

    def __init__(self, resolver: AllocationResolver):
        self._resolver = resolver

    async def resolve_all(self, orders: Iterable[Order]) -> Dict[str, SkuResolution]:
        skus: List[str] = []
        for order in orders:
            for line in order.items:
                sku = _line_sku(line)
                if sku and sku not in skus:
                    skus.append(sku)
        if not skus:
            return {}
        results = await asyncio.gather(*(self._resolver.resolve(sku) for sku in skus))
        return dict(zip(skus, results))

    async def consolidate(self, orders: List[Order]) -> List[AllocationEntry]:
        """
        Builds the flat allocation list for `orders`.

        Args:
            orders (list[Order]): Orders in their original discovery order.

        Returns:
            list[AllocationEntry]: One or more entries per line, in line order.
        """
        resolutions = await self.resolve_all(orders)
        engine = AllocationEngine()
        entries: List[AllocationEntry] = []
        for order in orders:
            for line in order.items:
                sku = _line_sku(line)
                entries.extend(engine.entries_for(line, resolutions.get(sku) if sku else None))
        log.debug(f"Consolidadas {len(entries)} asignaciones para {len(orders)} orden(es).")
        return entries
