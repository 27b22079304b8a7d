"""
End-to-end tests: the real clients and workflow against the mock marketplace
and the mock inventory service, wired in-process through ASGI transports.
"""

from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from conftest import NOW
from mock_services import mock_inventory_service, mock_marketplace
from note_service.auth import ZNUBE_PROVIDER, TokenStore, ZnubeTokenAuth
from note_service.clients import MeliClient, ZnubeClient
from note_service.workflow import OrderProcessor, ProcessingStatus, process_order_webhook


class StaticTokens:
    async def get_valid_access_token(self):
        return "APP_USR-e2e"


def iso(delta):
    return (NOW - delta).isoformat()


@pytest_asyncio.fixture
async def system(engine, lock_store, settings):
    mock_marketplace.reset()
    mock_inventory_service.reset()
    token_store = TokenStore(engine)

    meli = MeliClient(httpx.AsyncClient(transport=httpx.ASGITransport(app=mock_marketplace.app),
                                        base_url="http://meli"))
    znube = ZnubeClient(httpx.AsyncClient(transport=httpx.ASGITransport(app=mock_inventory_service.app),
                                          base_url="http://znube",
                                          auth=ZnubeTokenAuth(token_store, fallback_token="ZN-INITIAL")))
    processor = OrderProcessor(meli, znube, StaticTokens(), lock_store, settings, now=lambda: NOW)
    yield processor, token_store
    await meli.aclose()
    await znube.aclose()


@pytest.mark.asyncio
async def test_pack_note_is_written_once(system, lock_store):
    processor, _ = system
    mock_marketplace.add_order("2000001", [{"title": "Corpiño negro", "seller_sku": "P100!C1!T95", "quantity": 3}],
                               created_at=iso(timedelta(hours=2)), pack_id="3000001", shipping_id="4000001")
    mock_marketplace.add_order("2000002", [
        {"title": "Corpiño negro", "seller_sku": "P100#C1#T95", "quantity": 3},
        {"title": "Bombacha negra", "seller_sku": "P200 HST C1", "quantity": 1},
    ], created_at=iso(timedelta(hours=1)), pack_id="3000001", shipping_id="4000002")
    mock_marketplace.add_shipment("4000002", "self_service")

    result = await process_order_webhook(processor, "2000001", timeout=5)

    expected = (
        "[AUTO] Dep: Corpiño Negro 95 x2\n"
        "Pal: Corpiño Negro 95 x3\n"
        "SS: Corpiño Negro 95\n"
        "Bel: Bombacha Negro\n"
        "(Rosario, Santa Fe)"
    )
    assert result.status == ProcessingStatus.NOTE_WRITTEN
    assert mock_marketplace.NOTES == {"2000002": [expected]}
    assert [m["pack_id"] for m in mock_marketplace.MESSAGES] == ["3000001"]
    assert await lock_store.is_done("3000001")

    again = await process_order_webhook(processor, "2000002", timeout=5)

    assert again.status == ProcessingStatus.LOCK_NOT_ACQUIRED
    assert len(mock_marketplace.NOTES["2000002"]) == 1


@pytest.mark.asyncio
async def test_single_order_spreads_without_deposito(system):
    processor, _ = system
    mock_marketplace.add_order("2000010", [{"title": "Corpiño blanco", "seller_sku": "P100!C2!T95", "quantity": 2}],
                               created_at=iso(timedelta(minutes=5)))
    mock_marketplace.RECENT_ORDERS["9001"] = 2

    result = await process_order_webhook(processor, "2000010", timeout=5)

    assert result.note == "[AUTO] Bel: Corpiño Blanco 95 x2\n(TOC)"
    assert mock_marketplace.NOTES["2000010"] == [result.note]
    assert mock_marketplace.MESSAGES[0]["text"].startswith("¡Hola, ANA!")


@pytest.mark.asyncio
async def test_unknown_broken_and_empty_skus_are_labeled(system):
    processor, _ = system
    mock_marketplace.add_order("2000020", [
        {"title": "Sin stock", "seller_sku": "P100#C2#T100", "quantity": 1},
        {"title": "Desconocido", "seller_sku": "NOPE", "quantity": 1},
        {"title": "Roto", "seller_sku": "ERROR1", "quantity": 1},
    ], created_at=iso(timedelta(minutes=5)))

    result = await process_order_webhook(processor, "2000020", timeout=5)

    assert result.note == (
        "[AUTO] SS: Corpiño Blanco 100\n"
        "SA: Desconocido\n"
        "ERR: Roto"
    )


@pytest.mark.asyncio
async def test_fulfillment_order_is_left_alone(system):
    processor, _ = system
    mock_marketplace.add_order("2000030", [{"title": "Bombacha", "seller_sku": "P200#C1", "quantity": 1}],
                               created_at=iso(timedelta(minutes=5)), shipping_id="4000030")
    mock_marketplace.add_shipment("4000030", "fulfillment")

    result = await process_order_webhook(processor, "2000030", timeout=5)

    assert result.status == ProcessingStatus.FULFILLMENT_SKIPPED
    assert mock_marketplace.NOTES == {}


@pytest.mark.asyncio
async def test_broken_pack_writes_nothing(system, lock_store):
    processor, _ = system
    mock_marketplace.add_order("2000040", [{"title": "Bombacha", "seller_sku": "P200#C1", "quantity": 1}],
                               created_at=iso(timedelta(minutes=5)), pack_id="PACK-BROKEN")

    result = await process_order_webhook(processor, "2000040", timeout=5)

    assert result.status == ProcessingStatus.PACK_FETCH_FAILED
    assert mock_marketplace.NOTES == {}
    assert await lock_store.is_done("PACK-BROKEN")


@pytest.mark.asyncio
async def test_inventory_token_rotation_is_persisted(system):
    processor, token_store = system
    mock_inventory_service.ROTATED_TOKEN = "ZN-ROTATED"
    mock_marketplace.add_order("2000050", [{"title": "Bombacha", "seller_sku": "P200#C1", "quantity": 1}],
                               created_at=iso(timedelta(minutes=5)))

    await process_order_webhook(processor, "2000050", timeout=5)

    assert (await token_store.read(ZNUBE_PROVIDER)).access_token == "ZN-ROTATED"
