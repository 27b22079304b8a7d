"""
models.py — Data Models for Order Annotation

This module defines the data structures exchanged with the external systems.
It uses Pydantic models to ensure type safety and validation of incoming data.

Models:
    - WebhookNotification: Marketplace notification posted to the webhook.
    - OrderLine / Order: The fields of a marketplace order needed for allocation.
    - ShipmentInfo: Logistic type and destination zone of an order's shipment.
    - Inventory*: The inventory service's stock query response (PascalCase JSON).
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WebhookNotification(BaseModel):
    """
    Notification body sent by the marketplace on order changes.

    Attributes:
        resource (str | None): Path of the changed resource, e.g. "/orders/2000001".
        topic (str | None): Notification topic, e.g. "orders_v2".
    """
    resource: Optional[str] = None
    topic: Optional[str] = None
    user_id: Optional[int] = None

    def order_id(self) -> str:
        """Returns the last non-empty path segment of `resource`."""
        if not self.resource or not self.resource.strip():
            return ""
        parts = [p for p in self.resource.split("/") if p]
        return parts[-1] if parts else ""


class OrderLine(BaseModel):
    """
    A single line item of a marketplace order.

    Attributes:
        title (str): Listing title shown to the buyer.
        seller_sku (str | None): SKU assigned by the seller, if any.
        quantity (int): Requested units. Must be at least one.
    """
    model_config = ConfigDict(frozen=True)

    title: str
    seller_sku: Optional[str] = None
    quantity: int = Field(1, ge=1)


class Order(BaseModel):
    """
    The marketplace order fields used by the annotation workflow.

    Orders without `pack_id` are annotated alone; orders sharing a `pack_id`
    are consolidated into a single note.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    pack_id: Optional[str] = None
    created_at: Optional[datetime] = None
    buyer_id: Optional[str] = None
    buyer_nickname: Optional[str] = None
    buyer_first_name: Optional[str] = None
    shipping_id: Optional[str] = None
    items: List[OrderLine] = Field(default_factory=list)


class ShipmentInfo(BaseModel):
    logistic_type: Optional[str] = None
    is_full: bool = False
    is_flex: bool = False
    zone: Optional[str] = None


# --- Inventory service response (Omnichannel/GetStock) ---

class _PascalModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class InventoryStockDetail(_PascalModel):
    resource_id: str = Field("", alias="ResourceId")
    quantity: float = Field(0.0, alias="Quantity")


class InventoryVariantEntry(_PascalModel):
    variant_id: str = Field("", alias="VariantId")
    variant_type: str = Field("", alias="VariantType")


class InventoryStockItem(_PascalModel):
    """Stock of one SKU, split per resource."""
    stock: List[InventoryStockDetail] = Field(default_factory=list, alias="Stock")
    variants: List[InventoryVariantEntry] = Field(default_factory=list, alias="Variants")
    product_id: Optional[str] = Field(None, alias="ProductId")
    sku: Optional[str] = Field(None, alias="Sku")


class InventoryResource(_PascalModel):
    """A warehouse known to the inventory service with its total stock."""
    resource_id: str = Field("", alias="ResourceId")
    name: str = Field("", alias="Name")
    store: Optional[str] = Field(None, alias="Store")
    total_stock: float = Field(0.0, alias="TotalStock")


class InventoryVariantType(_PascalModel):
    type_name: str = Field("", alias="TypeName")
    names: Dict[str, str] = Field(default_factory=dict, alias="Names")


class InventoryData(_PascalModel):
    total_sku: int = Field(0, alias="TotalSku")
    stock: List[InventoryStockItem] = Field(default_factory=list, alias="Stock")
    resources: List[InventoryResource] = Field(default_factory=list, alias="Resources")
    products: Dict[str, str] = Field(default_factory=dict, alias="Products")
    variants: List[InventoryVariantType] = Field(default_factory=list, alias="Variants")


class InventoryResponse(_PascalModel):
    data: Optional[InventoryData] = Field(None, alias="Data")
    status: Optional[str] = Field(None, alias="Status")
