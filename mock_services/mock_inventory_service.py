"""
mock_inventory_service.py — Mock Implementation of the Inventory Service (REST)

This module provides a simulated inventory service for local runs and
end-to-end tests. It exposes the `Omnichannel/GetStock` endpoint with the same
PascalCase response shape as the real service, backed by an in-memory catalog.

The mock simulates common inventory-related scenarios:
    • Stock split across several resources
    • Unknown SKU (HTTP 404)
    • SKU containing "ERROR" → HTTP 500
    • Token rotation through the `zNube-token` response header

Port:
    Default: 8002 (HTTP)
"""

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, Header, HTTPException, Response

app = FastAPI(title="Mock Inventory Service")
logging.basicConfig(level=logging.INFO)

RESOURCES = [
    {"ResourceId": "R1", "Name": "Depósito", "Store": "central", "TotalStock": 120},
    {"ResourceId": "R2", "Name": "Palermo", "Store": "palermo", "TotalStock": 80},
    {"ResourceId": "R3", "Name": "Belgrano", "Store": "belgrano", "TotalStock": 45},
]

PRODUCTS = {"P100": "Corpiño", "P200": "Bombacha"}

VARIANT_TYPES = [
    {"TypeName": "Color", "Names": {"C1": "Negro", "C2": "Blanco"}},
    {"TypeName": "Talle", "Names": {"T95": "95", "T100": "100"}},
]

# sku -> (product id, [(variant id, variant type)], {resource id: quantity})
CATALOG: Dict[str, tuple] = {}

# Value returned in the zNube-token header; None disables rotation
ROTATED_TOKEN: Optional[str] = None


def reset():
    """Restores the demo catalog."""
    global ROTATED_TOKEN
    CATALOG.clear()
    CATALOG.update({
        "P100#C1#T95": ("P100", [("C1", "Color"), ("T95", "Talle")], {"R1": 2, "R2": 3}),
        "P100#C2#T95": ("P100", [("C2", "Color"), ("T95", "Talle")], {"R2": 1, "R3": 4}),
        "P100#C2#T100": ("P100", [("C2", "Color"), ("T100", "Talle")], {"R2": 0, "R3": 0}),
        "P200#C1": ("P200", [("C1", "Color")], {"R3": 5}),
    })
    ROTATED_TOKEN = None


def _stock_item(sku: str) -> dict:
    product_id, variants, quantities = CATALOG[sku]
    return {
        "Sku": sku,
        "ProductId": product_id,
        "Variants": [{"VariantId": vid, "VariantType": vtype} for vid, vtype in variants],
        "Stock": [{"ResourceId": rid, "Quantity": qty} for rid, qty in quantities.items()],
    }


def _envelope(items: List[dict]) -> dict:
    return {
        "Status": "OK",
        "Data": {
            "TotalSku": len(items),
            "Stock": items,
            "Resources": RESOURCES,
            "Products": PRODUCTS,
            "Variants": VARIANT_TYPES,
        },
    }


@app.get("/Omnichannel/GetStock")
def get_stock(
        response: Response,
        sku: Optional[str] = None,
        productId: Optional[str] = None,
        token: Optional[str] = Header(None, alias="zNube-token"),
):
    """
    Returns stock for one SKU or for every SKU of a product.

    Behavior:
        - Missing token → HTTP 401.
        - SKU containing "ERROR" → HTTP 500.
        - Unknown SKU or product → HTTP 404.
    """
    if not token:
        raise HTTPException(status_code=401, detail="missing zNube-token")
    if ROTATED_TOKEN:
        response.headers["zNube-token"] = ROTATED_TOKEN

    if sku is not None:
        logging.info(f"[IS] Consulta de stock por SKU {sku}")
        if "ERROR" in sku:
            raise HTTPException(status_code=500, detail="simulated failure")
        if sku not in CATALOG:
            raise HTTPException(status_code=404, detail="sku not found")
        return _envelope([_stock_item(sku)])

    if productId is not None:
        logging.info(f"[IS] Consulta de stock por producto {productId}")
        items = [_stock_item(s) for s, entry in CATALOG.items() if entry[0] == productId]
        if not items:
            raise HTTPException(status_code=404, detail="product not found")
        return _envelope(items)

    raise HTTPException(status_code=400, detail="sku or productId required")


reset()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8002)
