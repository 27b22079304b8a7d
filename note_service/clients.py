"""
This module provides communication clients for the external systems used by the note service:
- Marketplace API (REST, OAuth bearer token): orders, packs, shipments, notes, buyer messages
- Inventory Service (REST, rotating zNube-token header): stock per SKU and per product
Each class encapsulates its protocol logic and error handling; both share the
asynchronous `httpx.AsyncClient` they are constructed with.
"""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional

import httpx

from .auth import TokenStore, ZnubeTokenAuth
from .config import Settings
from .models import InventoryResponse, Order, OrderLine, ShipmentInfo

log = logging.getLogger(__name__)


def _bearer(access_token: str) -> dict:
    return {"Authorization": f"Bearer {access_token}"}


def _str_or_none(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_order(payload: dict) -> Order:
    """
    Extracts the allocation-relevant fields of a marketplace order document.

    Items without a title are skipped; the seller SKU is read from the item
    first and from the order item as a fallback.
    """
    items = []
    for order_item in payload.get("order_items") or []:
        item = order_item.get("item") or {}
        title = _str_or_none(item.get("title"))
        if not title:
            continue
        sku = _str_or_none(item.get("seller_sku")) or _str_or_none(order_item.get("seller_sku"))
        try:
            quantity = max(1, int(order_item.get("quantity") or 1))
        except (TypeError, ValueError):
            quantity = 1
        items.append(OrderLine(title=title, seller_sku=sku, quantity=quantity))

    buyer = payload.get("buyer") or {}
    shipping = payload.get("shipping") or {}
    return Order(
        id=str(payload["id"]),
        pack_id=_str_or_none(payload.get("pack_id")),
        created_at=payload.get("date_created"),
        buyer_id=_str_or_none(buyer.get("id")),
        buyer_nickname=_str_or_none(buyer.get("nickname")),
        buyer_first_name=_str_or_none(buyer.get("first_name")),
        shipping_id=_str_or_none(shipping.get("id")),
        items=items,
    )


def parse_zone(payload: dict) -> Optional[str]:
    """Returns "<city>, <state>", or whichever of both the address carries."""
    address = payload.get("receiver_address") or {}
    city = _str_or_none((address.get("city") or {}).get("name"))
    state = _str_or_none((address.get("state") or {}).get("name"))
    if city and state:
        return f"{city}, {state}"
    return city or state


# --- Marketplace Client (REST) ---
class MeliClient:
    """
    Client for the marketplace REST API.
    Every call takes the access token explicitly; token refresh lives in `auth.MeliAuth`.
    """

    def __init__(self, http: httpx.AsyncClient, logistic_type_full: str = "fulfillment",
                 logistic_type_flex: str = "self_service"):
        """
        Args:
            http (httpx.AsyncClient): Client whose base URL is the marketplace API.
            logistic_type_full (str): Logistic type reported for fulfillment shipments.
            logistic_type_flex (str): Logistic type reported for self-service shipments.
        """
        self.http = http
        self.logistic_type_full = logistic_type_full.lower()
        self.logistic_type_flex = logistic_type_flex.lower()

    @classmethod
    def from_settings(cls, settings: Settings) -> "MeliClient":
        http = httpx.AsyncClient(base_url=settings.meli_base_url, timeout=httpx.Timeout(settings.http_timeout))
        return cls(http, settings.logistic_type_full, settings.logistic_type_flex)

    async def aclose(self):
        await self.http.aclose()

    async def fetch_order(self, order_id: str, access_token: str) -> Optional[Order]:
        """
        Loads one order.

        Returns:
            Order | None: None when the marketplace answers 404.
        Raises:
            httpx.HTTPStatusError: For any other non-success status.
        """
        response = await self.http.get(f"/orders/{order_id}", headers=_bearer(access_token))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return parse_order(response.json())

    async def fetch_orders_by_pack(self, pack_id: str, access_token: str) -> List[Order]:
        """
        Loads every order of a pack, in the order the marketplace lists them.

        Returns:
            list[Order]: Empty when the pack or any of its orders cannot be loaded,
            so callers never build a note from a partial pack.
        """
        try:
            response = await self.http.get(f"/packs/{pack_id}", headers=_bearer(access_token))
            response.raise_for_status()
            order_ids = [str(o["id"]) for o in response.json().get("orders") or [] if o.get("id") is not None]
            orders = await asyncio.gather(*(self.fetch_order(oid, access_token) for oid in order_ids))
        except (httpx.HTTPError, ValueError, KeyError) as e:
            log.error(f"[Pack: {pack_id}] No se pudieron obtener las órdenes del pack: {e}")
            return []
        if any(o is None for o in orders):
            log.error(f"[Pack: {pack_id}] Alguna orden del pack no está disponible.")
            return []
        return list(orders)

    async def fetch_shipment_info(self, order: Order, access_token: str) -> Optional[ShipmentInfo]:
        """
        Loads the logistic type and destination zone of an order's shipment.

        Returns:
            ShipmentInfo | None: None when the order has no shipment.
        Raises:
            httpx.HTTPError: If the shipment cannot be loaded.
        """
        if not order.shipping_id:
            return None
        headers = {**_bearer(access_token), "x-format-new": "true"}
        response = await self.http.get(f"/shipments/{order.shipping_id}", headers=headers)
        response.raise_for_status()
        payload = response.json()
        logistic_type = payload.get("logistic_type") or (payload.get("logistic") or {}).get("type")
        normalized = (logistic_type or "").lower()
        return ShipmentInfo(
            logistic_type=logistic_type,
            is_full=normalized == self.logistic_type_full,
            is_flex=normalized == self.logistic_type_flex,
            zone=parse_zone(payload),
        )

    async def fetch_existing_notes(self, order_id: str, access_token: str) -> List[str]:
        response = await self.http.get(f"/orders/{order_id}/notes", headers=_bearer(access_token))
        if response.status_code == 404:
            return []
        response.raise_for_status()
        notes = []
        for entry in response.json() or []:
            for result in entry.get("results") or []:
                note = result.get("note")
                if isinstance(note, str) and note.strip():
                    notes.append(note)
        return notes

    async def upsert_note(self, order_id: str, text: str, access_token: str) -> bool:
        """
        Posts a note on the order.

        Returns:
            bool: True when the marketplace accepted the note.
        Raises:
            httpx.TransportError: If the request could not be sent.
        """
        if not order_id or not text or not text.strip():
            return False
        response = await self.http.post(
            f"/orders/{order_id}/notes", json={"note": text}, headers=_bearer(access_token)
        )
        if not response.is_success:
            log.error(f"[Order: {order_id}] HTTP {response.status_code} al escribir la nota: {response.text}")
        return response.is_success

    async def count_recent_orders_by_buyer(self, date_from: datetime, date_to: datetime, buyer_id: str,
                                           seller_id: str, access_token: str) -> bool:
        """
        Tells whether the buyer placed two or more orders with the seller in the window.

        Raises:
            httpx.HTTPError: If the search fails.
        """
        params = {
            "seller": seller_id,
            "buyer": buyer_id,
            "order.date_created.from": date_from.isoformat(timespec="milliseconds"),
            "order.date_created.to": date_to.isoformat(timespec="milliseconds"),
        }
        response = await self.http.get("/orders/search", params=params, headers=_bearer(access_token))
        response.raise_for_status()
        payload = response.json()
        total = (payload.get("paging") or {}).get("total")
        if total is None:
            total = len(payload.get("results") or [])
        return int(total) >= 2

    async def send_buyer_message(self, pack_id: str, text: str, access_token: str):
        """
        Sends a post-sale message to the buyer of a pack (or single order).

        Raises:
            httpx.HTTPError: If the message is rejected or cannot be sent.
        """
        response = await self.http.post(
            f"/messages/action_guide/packs/{pack_id}/option",
            params={"tag": "post_sale"},
            json={"option_id": "OTHER", "text": text},
            headers=_bearer(access_token),
        )
        response.raise_for_status()


# --- Inventory Client (REST) ---
class ZnubeClient:
    """
    Client for the inventory service's Omnichannel stock endpoint.
    Authentication is attached to the underlying `httpx.AsyncClient` (see `ZnubeTokenAuth`).
    """

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    @classmethod
    def from_settings(cls, settings: Settings, token_store: TokenStore) -> "ZnubeClient":
        http = httpx.AsyncClient(
            base_url=settings.znube_base_url,
            timeout=httpx.Timeout(settings.http_timeout),
            auth=ZnubeTokenAuth(token_store, settings.znube_token),
        )
        return cls(http)

    async def aclose(self):
        await self.http.aclose()

    async def _get_stock(self, params: dict) -> Optional[InventoryResponse]:
        response = await self.http.get("/Omnichannel/GetStock", params=params)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return InventoryResponse.model_validate(response.json())

    async def query_stock_by_sku(self, sku: str) -> Optional[InventoryResponse]:
        """
        Queries stock for one SKU across all resources.

        Returns:
            InventoryResponse | None: None when the inventory answers 404.
        Raises:
            httpx.HTTPError: On transport failures or other error statuses.
            pydantic.ValidationError: If the body does not match the expected shape.
        """
        return await self._get_stock({"sku": sku})

    async def query_stock_by_product(self, product_id: str) -> Optional[InventoryResponse]:
        return await self._get_stock({"productId": product_id})
