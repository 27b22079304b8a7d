"""
mock_marketplace.py — Mock Implementation of the Marketplace API (REST)

This module provides a simulated marketplace for local runs and end-to-end
tests of the note workflow. It keeps orders, packs, shipments, notes and
buyer messages in memory.

Simulation Scenarios:
    • Single orders and multi-order packs
    • Fulfillment / self-service / regular shipments
    • Notes already present on an order
    • Pack id "PACK-BROKEN" → HTTP 500 on pack lookup

Endpoints:
    GET  /orders/{id}, GET|POST /orders/{id}/notes, GET /orders/search,
    GET  /packs/{id}, GET /shipments/{id},
    POST /messages/action_guide/packs/{id}/option, POST /oauth/token

Port:
    Default: 8001 (HTTP)
"""

import logging
import uuid
from typing import Dict, List, Optional
from urllib.parse import parse_qs

from fastapi import FastAPI, Header, HTTPException, Request
from pydantic import BaseModel

app = FastAPI(title="Mock Marketplace API")
logging.basicConfig(level=logging.INFO)

ORDERS: Dict[str, dict] = {}
PACKS: Dict[str, List[str]] = {}
SHIPMENTS: Dict[str, dict] = {}
NOTES: Dict[str, List[str]] = {}
MESSAGES: List[dict] = []
# buyer id -> number of orders reported by the search endpoint
RECENT_ORDERS: Dict[str, int] = {}


class NoteRequest(BaseModel):
    note: str


class MessageRequest(BaseModel):
    option_id: str
    text: str


def reset():
    for store in (ORDERS, PACKS, SHIPMENTS, NOTES, RECENT_ORDERS):
        store.clear()
    MESSAGES.clear()


def add_order(order_id: str, items: List[dict], created_at: str, pack_id: Optional[str] = None,
              shipping_id: Optional[str] = None, buyer_id: str = "9001", first_name: str = "Ana"):
    """
    Registers an order. `items` are dicts with "title", "seller_sku" and "quantity".
    """
    ORDERS[order_id] = {
        "id": int(order_id),
        "pack_id": int(pack_id) if pack_id and pack_id.isdigit() else pack_id,
        "date_created": created_at,
        "buyer": {"id": int(buyer_id), "nickname": f"BUYER{buyer_id}", "first_name": first_name},
        "shipping": {"id": int(shipping_id)} if shipping_id else {},
        "order_items": [
            {
                "item": {"title": i["title"], "seller_sku": i.get("seller_sku")},
                "quantity": i.get("quantity", 1),
            }
            for i in items
        ],
    }
    if pack_id:
        PACKS.setdefault(pack_id, []).append(order_id)


def add_shipment(shipping_id: str, logistic_type: str, city: str = "Rosario", state: str = "Santa Fe"):
    SHIPMENTS[shipping_id] = {
        "id": int(shipping_id),
        "logistic_type": logistic_type,
        "receiver_address": {"city": {"name": city}, "state": {"name": state}},
    }


def _require_token(authorization: Optional[str]):
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="invalid_token")


@app.get("/orders/search")
def search_orders(request: Request, authorization: Optional[str] = Header(None)):
    _require_token(authorization)
    buyer = request.query_params.get("buyer", "")
    total = RECENT_ORDERS.get(buyer, 1)
    return {"results": [], "paging": {"total": total}}


@app.get("/orders/{order_id}")
def get_order(order_id: str, authorization: Optional[str] = Header(None)):
    _require_token(authorization)
    if order_id not in ORDERS:
        raise HTTPException(status_code=404, detail="order_not_found")
    return ORDERS[order_id]


@app.get("/orders/{order_id}/notes")
def get_notes(order_id: str, authorization: Optional[str] = Header(None)):
    _require_token(authorization)
    if order_id not in ORDERS:
        raise HTTPException(status_code=404, detail="order_not_found")
    results = [{"id": str(i), "note": n} for i, n in enumerate(NOTES.get(order_id, []))]
    return [{"order_id": int(order_id), "results": results}]


@app.post("/orders/{order_id}/notes", status_code=201)
def post_note(order_id: str, request: NoteRequest, authorization: Optional[str] = Header(None)):
    _require_token(authorization)
    if order_id not in ORDERS:
        raise HTTPException(status_code=404, detail="order_not_found")
    logging.info(f"[MP] Nota para {order_id}: {request.note!r}")
    NOTES.setdefault(order_id, []).append(request.note)
    return {"note": {"id": str(uuid.uuid4()), "note": request.note}}


@app.get("/packs/{pack_id}")
def get_pack(pack_id: str, authorization: Optional[str] = Header(None)):
    _require_token(authorization)
    if pack_id == "PACK-BROKEN":
        raise HTTPException(status_code=500, detail="simulated failure")
    if pack_id not in PACKS:
        raise HTTPException(status_code=404, detail="pack_not_found")
    return {"id": pack_id, "orders": [{"id": int(oid)} for oid in PACKS[pack_id]]}


@app.get("/shipments/{shipping_id}")
def get_shipment(shipping_id: str, authorization: Optional[str] = Header(None)):
    _require_token(authorization)
    if shipping_id not in SHIPMENTS:
        raise HTTPException(status_code=404, detail="shipment_not_found")
    return SHIPMENTS[shipping_id]


@app.post("/messages/action_guide/packs/{pack_id}/option")
def send_message(pack_id: str, request: MessageRequest, authorization: Optional[str] = Header(None)):
    _require_token(authorization)
    MESSAGES.append({"pack_id": pack_id, "option_id": request.option_id, "text": request.text})
    return {"id": str(uuid.uuid4()), "status": "sent"}


@app.post("/oauth/token")
async def oauth_token(request: Request):
    """Issues tokens for `authorization_code` and `refresh_token` grants."""
    form = parse_qs((await request.body()).decode())
    grant_type = (form.get("grant_type") or [None])[0]
    if grant_type not in ("authorization_code", "refresh_token"):
        raise HTTPException(status_code=400, detail="unsupported_grant_type")
    return {
        "access_token": f"APP_USR-{uuid.uuid4().hex}",
        "refresh_token": f"TG-{uuid.uuid4().hex}",
        "expires_in": 21600,
        "token_type": "Bearer",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8001)
