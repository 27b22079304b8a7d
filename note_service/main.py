"""
main.py — FastAPI Entry Point for the Note Service

This module provides the HTTP interface of the order annotation service.
It acts as the entry point between the marketplace's order notifications and
the workflow that writes the warehouse-assignment note.

Responsibilities:
    • Accept order webhooks and acknowledge them immediately
    • Trigger background processing (allocation → note → buyer message)
    • Complete the OAuth authorization of the marketplace account
    • Provide system health information
"""

from contextlib import asynccontextmanager

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request

from .auth import MeliAuth, TokenStore, TokenUnavailableError
from .clients import MeliClient, ZnubeClient
from .config import load_settings
from .db import create_engine, create_schema
from .locks import PackLockStore
from .logging_config import get_logger, setup_logging
from .models import WebhookNotification
from .workflow import OrderProcessor, process_order_webhook

# Initialization
# Configure logging and load settings once per process
settings = load_settings()
setup_logging(settings.log_level, settings.log_file)
log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Wires storage, HTTP clients and the workflow on startup and closes them
    on shutdown. The lock and token tables are created if missing.
    """
    log.info("Servicio de notas iniciando...")
    engine = create_engine(settings.database_url)
    await create_schema(engine)

    token_store = TokenStore(engine)
    meli = MeliClient.from_settings(settings)
    znube = ZnubeClient.from_settings(settings, token_store)
    auth = MeliAuth(token_store, meli.http, settings)

    app.state.settings = settings
    app.state.auth = auth
    app.state.processor = OrderProcessor(meli, znube, auth, PackLockStore(engine), settings)
    log.info("Servicio de notas listo.")
    yield

    await meli.aclose()
    await znube.aclose()
    await engine.dispose()


app = FastAPI(title="Notas de asignación de depósito", lifespan=lifespan)


# API Endpoint: Marketplace → Note Service
@app.post("/webhooks/orders")
async def receive_order_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Receives an order notification from the marketplace and starts processing.

    The marketplace retries notifications that are not answered quickly with
    200, so the endpoint always answers 200 and runs the workflow as a
    background task. Bodies without a usable `resource` are acknowledged and
    ignored.

    Returns:
        dict: JSON response containing:
            - status (str): "accepted" or "ignored".
            - orderId (str): Order id parsed from the resource, when present.
    """
    try:
        notification = WebhookNotification.model_validate(await request.json())
    except ValueError as e:
        log.warning(f"No se pudo parsear el body del webhook: {e}")
        return {"status": "ignored"}

    order_id = notification.order_id()
    if not order_id:
        log.info(f"Webhook sin resource utilizable: {notification.resource!r}")
        return {"status": "ignored"}

    log.info(f"[Order: {order_id}] Webhook recibido (topic: {notification.topic}).")
    background_tasks.add_task(
        process_order_webhook,
        request.app.state.processor,
        order_id,
        settings.processing_timeout,
    )
    return {"status": "accepted", "orderId": order_id}


# OAuth callback: Marketplace → Note Service
@app.get("/oauth/callback")
async def oauth_callback(code: str, request: Request):
    """
    Exchanges the authorization code returned by the marketplace for tokens.

    Raises:
        HTTPException(500): If the OAuth app credentials are not configured.
        HTTPException(502): If the marketplace rejects the exchange.
    """
    try:
        await request.app.state.auth.exchange_code(code)
    except TokenUnavailableError as e:
        log.critical(f"OAuth no configurado: {e}")
        raise HTTPException(status_code=500, detail="OAuth credentials missing.")
    except httpx.HTTPError as e:
        log.error(f"Intercambio de código OAuth fallido: {e}")
        raise HTTPException(status_code=502, detail="Authorization code exchange failed.")
    return {"status": "authorized"}


# Health Check Endpoint
@app.get("/health")
def health_check():
    """
    Simple health check endpoint for monitoring systems and container
    orchestrators.

    Returns:
        dict: A basic JSON object indicating service availability.
    """
    return {"status": "ok"}
