"""Test fixtures and in-memory collaborators for the note service tests."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from note_service.config import Settings
from note_service.db import create_engine, create_schema
from note_service.locks import PackLockStore
from note_service.models import InventoryResponse, Order, OrderLine

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def stock_response(sku, quantities, product_id="P1", product_name="Corpiño", totals=None, variants=None,
                   variant_types=None):
    """
    Builds an inventory response for one SKU.

    Args:
        quantities (dict): Resource name -> units of `sku`, in discovery order.
            Resource ids are "id-<name>".
        totals (dict | None): Resource name -> total stock of the resource.
        variants (list | None): (variant id, variant type) pairs of the SKU.
        variant_types (dict | None): Type name -> {variant id: display name}.
    """
    totals = totals or {}
    return InventoryResponse.model_validate({
        "Status": "OK",
        "Data": {
            "TotalSku": 1,
            "Stock": [{
                "Sku": sku,
                "ProductId": product_id,
                "Variants": [{"VariantId": v, "VariantType": t} for v, t in (variants or [])],
                "Stock": [{"ResourceId": f"id-{name}", "Quantity": qty} for name, qty in quantities.items()],
            }],
            "Resources": [
                {"ResourceId": f"id-{name}", "Name": name, "TotalStock": totals.get(name, 0)}
                for name in quantities
            ],
            "Products": {product_id: product_name} if product_name else {},
            "Variants": [{"TypeName": t, "Names": names} for t, names in (variant_types or {}).items()],
        },
    })


def make_order(order_id, items, pack_id=None, created_at=None, shipping_id=None, buyer_id="B1",
               first_name="Ana"):
    """`items` are (title, seller_sku, quantity) tuples."""
    return Order(
        id=order_id,
        pack_id=pack_id,
        created_at=created_at or NOW - timedelta(hours=1),
        buyer_id=buyer_id,
        buyer_nickname=f"NICK{buyer_id}",
        buyer_first_name=first_name,
        shipping_id=shipping_id,
        items=[OrderLine(title=t, seller_sku=s, quantity=q) for t, s, q in items],
    )


class FakeInventory:
    def __init__(self, by_sku=None, by_product=None, failing=None, errors=None):
        """`failing` SKUs raise a transport error; `errors` maps a SKU or product id to the exception to raise."""
        self.by_sku = by_sku or {}
        self.by_product = by_product or {}
        self.failing = set(failing or [])
        self.errors = dict(errors or {})
        self.sku_calls = []
        self.product_calls = []

    async def query_stock_by_sku(self, sku):
        self.sku_calls.append(sku)
        if sku in self.failing:
            raise httpx.ConnectError("connection refused")
        if sku in self.errors:
            raise self.errors[sku]
        return self.by_sku.get(sku)

    async def query_stock_by_product(self, product_id):
        self.product_calls.append(product_id)
        if product_id in self.errors:
            raise self.errors[product_id]
        return self.by_product.get(product_id)


class FakeMarketplace:
    def __init__(self):
        self.orders = {}
        self.packs = {}
        self.shipments = {}
        self.notes = {}
        self.written = []
        self.messages = []
        self.repeat_buyer = False
        self.upsert_ok = True
        self.shipment_error = None
        self.repeat_error = None
        self.message_error = None
        self.repeat_calls = []

    def add(self, order, shipment=None):
        self.orders[order.id] = order
        if order.pack_id:
            self.packs.setdefault(order.pack_id, []).append(order.id)
        if shipment is not None:
            self.shipments[order.id] = shipment

    async def fetch_order(self, order_id, access_token):
        return self.orders.get(order_id)

    async def fetch_orders_by_pack(self, pack_id, access_token):
        return [self.orders[oid] for oid in self.packs.get(pack_id, [])]

    async def fetch_shipment_info(self, order, access_token):
        if self.shipment_error:
            raise self.shipment_error
        return self.shipments.get(order.id)

    async def fetch_existing_notes(self, order_id, access_token):
        return list(self.notes.get(order_id, []))

    async def upsert_note(self, order_id, text, access_token):
        self.written.append((order_id, text))
        if self.upsert_ok:
            self.notes.setdefault(order_id, []).append(text)
        return self.upsert_ok

    async def count_recent_orders_by_buyer(self, date_from, date_to, buyer_id, seller_id, access_token):
        self.repeat_calls.append((date_from, date_to, buyer_id, seller_id))
        if self.repeat_error:
            raise self.repeat_error
        return self.repeat_buyer

    async def send_buyer_message(self, pack_id, text, access_token):
        if self.message_error:
            raise self.message_error
        self.messages.append((pack_id, text))


class FakeTokens:
    async def get_valid_access_token(self):
        return "APP_USR-test"


@pytest.fixture
def settings():
    return Settings(meli_seller_id="SELLER1", send_buyer_message=True, upsert_order_note=True)


@pytest.fixture
def marketplace():
    return FakeMarketplace()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'note_service.db'}")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def lock_store(engine):
    return PackLockStore(engine)
