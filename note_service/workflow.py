"""
workflow.py — Core Orchestration Logic for Order Annotation

This module contains the workflow that turns one order webhook into at most
one "[AUTO]" note on the marketplace order.

Workflow Overview:
1. Fetch the order; ignore it if missing or older than 24 hours
2. Single order: stop if it already carries an "[AUTO]" note
   Pack order: claim the pack lock (one winner per pack id), then load every
   order of the pack
3. Shipment gate: fulfillment shipments get no note; self-service shipments
   get a trailing zone line
4. Allocate every line across warehouses (shared stock budget for packs)
5. Compose, write once, then send the buyer message (best effort)
6. Pack only: mark the lock done, always, even on error or cancellation
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from .allocation import PackConsolidator
from .auth import TokenUnavailableError
from .config import Settings
from .models import Order
from .notes import NoteComposer, WriteOutcome, contains_auto_note
from .resolver import AllocationResolver

log = logging.getLogger(__name__)

STALE_AFTER = timedelta(hours=24)
REPEAT_BUYER_WINDOW = timedelta(hours=24)


class ProcessingStatus(str, Enum):
    NOTE_WRITTEN = "note_written"
    NOTE_COMPOSED = "note_composed"
    NOTE_NOT_WRITTEN = "note_not_written"
    ORDER_NOT_FOUND = "order_not_found"
    STALE_ORDER = "stale_order"
    ALREADY_ANNOTATED = "already_annotated"
    FULFILLMENT_SKIPPED = "fulfillment_skipped"
    EMPTY_NOTE = "empty_note"
    LOCK_NOT_ACQUIRED = "lock_not_acquired"
    PACK_FETCH_FAILED = "pack_fetch_failed"


@dataclass(frozen=True)
class StepResult:
    """Outcome of an optional step whose failure must not stop the workflow."""
    ok: bool
    value: Any = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value=None) -> "StepResult":
        return cls(True, value)

    @classmethod
    def failure(cls, error: Exception) -> "StepResult":
        return cls(False, None, str(error) or type(error).__name__)


@dataclass
class ProcessingResult:
    """
    What one invocation did.

    Attributes:
        status (ProcessingStatus): Terminal state of the workflow.
        order_id (str | None): Order the note was (or would have been) written to.
        note (str | None): Final note text, when one was composed.
        degraded (list[str]): Optional steps that failed: "shipment",
            "repeat_buyer", "buyer_message".
    """
    status: ProcessingStatus
    order_id: Optional[str] = None
    note: Optional[str] = None
    degraded: List[str] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _numeric_id(order_id: Optional[str]) -> int:
    try:
        return int(order_id or "")
    except ValueError:
        return 0


def last_order_in_pack(orders: List[Order]) -> Order:
    """Latest order by creation time, ties broken by numeric order id."""
    def key(order: Order):
        created = _as_utc(order.created_at).timestamp() if order.created_at else float("-inf")
        return created, _numeric_id(order.id)
    return max(orders, key=key)


def buyer_display_name(orders: List[Order]) -> str:
    name = next((o.buyer_first_name for o in orders if o.buyer_first_name and o.buyer_first_name.strip()), None)
    name = name or next((o.buyer_nickname for o in orders if o.buyer_nickname and o.buyer_nickname.strip()), "")
    return name.strip().upper()


def build_buyer_message(buyer_name: str) -> str:
    greeting = f"¡Hola, {buyer_name}!" if buyer_name else "¡Hola!"
    return (
        f"{greeting} Gracias por tu compra.\n"
        "¿Querés aprovechar el envío y sumar otro producto?"
    )


class OrderProcessor:
    """
    Drives one order webhook through the annotation workflow.

    Args:
        marketplace: Marketplace client (see `clients.MeliClient`).
        inventory: Inventory client (see `clients.ZnubeClient`).
        tokens: Token provider exposing `get_valid_access_token()`.
        locks: Pack lock store (see `locks.PackLockStore`).
        settings (Settings): Feature flags, seller id and resolver options.
        composer (NoteComposer | None): Note renderer; a default one is built if omitted.
        now (callable | None): Clock returning an aware UTC datetime.
    """

    def __init__(self, marketplace, inventory, tokens, locks, settings: Settings,
                 composer: Optional[NoteComposer] = None, now: Optional[Callable[[], datetime]] = None):
        self._marketplace = marketplace
        self._tokens = tokens
        self._locks = locks
        self._settings = settings
        self._composer = composer or NoteComposer()
        self._now = now or (lambda: datetime.now(timezone.utc))
        self._consolidator = PackConsolidator(AllocationResolver(inventory, settings.resolve_by_product))

    async def process(self, order_id: str) -> ProcessingResult:
        """
        Runs the workflow for the order referenced by a webhook.

        Raises:
            TokenUnavailableError: If no marketplace token can be obtained.
            httpx.HTTPError: If the order itself cannot be loaded.
        """
        log_prefix = f"[Order: {order_id}]"
        access_token = await self._tokens.get_valid_access_token()

        order = await self._marketplace.fetch_order(order_id, access_token)
        if order is None:
            log.info(f"{log_prefix} Orden no disponible. Nada que hacer.")
            return ProcessingResult(ProcessingStatus.ORDER_NOT_FOUND, order_id)

        if order.created_at is not None and _as_utc(order.created_at) < self._now() - STALE_AFTER:
            log.info(f"{log_prefix} Orden con más de 24h. Se ignora.")
            return ProcessingResult(ProcessingStatus.STALE_ORDER, order_id)

        if not order.pack_id:
            return await self._process_single(order, access_token)
        return await self._process_pack(order.pack_id, access_token)

    async def _process_single(self, order: Order, access_token: str) -> ProcessingResult:
        existing = await self._marketplace.fetch_existing_notes(order.id, access_token)
        if contains_auto_note(existing):
            log.info(f"[Order: {order.id}] Ya anotada ([AUTO]). Se corta.")
            return ProcessingResult(ProcessingStatus.ALREADY_ANNOTATED, order.id)
        return await self._annotate([order], order, access_token, message_target=order.id)

    async def _process_pack(self, pack_id: str, access_token: str) -> ProcessingResult:
        log_prefix = f"[Pack: {pack_id}]"
        lock = await self._locks.try_acquire(pack_id)
        if not lock.acquired:
            log.info(f"{log_prefix} Lock no adquirido, otro proceso maneja el pack.")
            return ProcessingResult(ProcessingStatus.LOCK_NOT_ACQUIRED)

        try:
            orders = await self._marketplace.fetch_orders_by_pack(pack_id, access_token)
            if not orders:
                log.warning(f"{log_prefix} Sin órdenes para el pack. No se escribe nota.")
                return ProcessingResult(ProcessingStatus.PACK_FETCH_FAILED)

            reference = last_order_in_pack(orders)
            log.info(f"{log_prefix} {len(orders)} orden(es); nota en la orden {reference.id}.")
            return await self._annotate(orders, reference, access_token, message_target=pack_id)
        finally:
            # shielded so a cancelled invocation still releases the pack
            await asyncio.shield(self._locks.mark_done(lock))

    async def _annotate(self, orders: List[Order], reference: Order, access_token: str,
                        message_target: str) -> ProcessingResult:
        log_prefix = f"[Order: {reference.id}]"
        degraded: List[str] = []

        shipment = await self._shipment_step(reference, access_token)
        zone = None
        if not shipment.ok:
            degraded.append("shipment")
            log.warning(f"{log_prefix} Envío no consultable, se sigue sin zona: {shipment.error}")
        elif shipment.value is not None:
            if shipment.value.is_full:
                log.info(f"{log_prefix} Envío FULL. Se omite la nota.")
                return ProcessingResult(ProcessingStatus.FULFILLMENT_SKIPPED, reference.id, degraded=degraded)
            if shipment.value.is_flex:
                zone = shipment.value.zone

        entries = await self._consolidator.consolidate(orders)
        # zone and repeat-buyer lines alone never make a note
        if not self._composer.grouped_lines(entries):
            log.info(f"{log_prefix} Nota vacía. Nada que escribir.")
            return ProcessingResult(ProcessingStatus.EMPTY_NOTE, reference.id, degraded=degraded)

        repeat = await self._repeat_buyer_step(reference, access_token)
        if not repeat.ok:
            degraded.append("repeat_buyer")
            log.warning(f"{log_prefix} Chequeo de compras en 24h fallido, se asume que no: {repeat.error}")

        body = self._composer.compose_body(entries, zone=zone, repeat_buyer=bool(repeat.value))
        note = self._composer.build_final_note(body)
        if not self._settings.upsert_order_note:
            log.info(f"{log_prefix} UPSERT_ORDER_NOTE desactivado. Nota compuesta: {note!r}")
            return ProcessingResult(ProcessingStatus.NOTE_COMPOSED, reference.id, note, degraded)

        outcome = await self._composer.write_once(self._marketplace, reference.id, note, access_token)
        if outcome == WriteOutcome.ALREADY_ANNOTATED:
            return ProcessingResult(ProcessingStatus.ALREADY_ANNOTATED, reference.id, degraded=degraded)
        if outcome == WriteOutcome.FAILED:
            return ProcessingResult(ProcessingStatus.NOTE_NOT_WRITTEN, reference.id, note, degraded)

        if self._settings.send_buyer_message:
            sent = await self._buyer_message_step(orders, message_target, access_token)
            if not sent.ok:
                degraded.append("buyer_message")
                log.warning(f"[Pack: {message_target}] Fallo al enviar mensaje al comprador: {sent.error}")

        return ProcessingResult(ProcessingStatus.NOTE_WRITTEN, reference.id, note, degraded)

    async def _shipment_step(self, order: Order, access_token: str) -> StepResult:
        try:
            return StepResult.success(await self._marketplace.fetch_shipment_info(order, access_token))
        except (httpx.HTTPError, ValueError) as e:
            return StepResult.failure(e)

    async def _repeat_buyer_step(self, order: Order, access_token: str) -> StepResult:
        seller_id = self._settings.meli_seller_id
        if not seller_id or order.created_at is None or not order.buyer_id:
            return StepResult.success(False)
        date_to = _as_utc(order.created_at)
        try:
            repeat = await self._marketplace.count_recent_orders_by_buyer(
                date_to - REPEAT_BUYER_WINDOW, date_to, order.buyer_id, seller_id, access_token
            )
        except (httpx.HTTPError, ValueError) as e:
            return StepResult.failure(e)
        return StepResult.success(bool(repeat))

    async def _buyer_message_step(self, orders: List[Order], target: str, access_token: str) -> StepResult:
        text = build_buyer_message(buyer_display_name(orders))
        try:
            await self._marketplace.send_buyer_message(target, text, access_token)
        except (httpx.HTTPError, ValueError) as e:
            return StepResult.failure(e)
        return StepResult.success()


async def process_order_webhook(processor: OrderProcessor, order_id: str, timeout: float) -> Optional[ProcessingResult]:
    """
    Runs one webhook invocation under a deadline.

    This function is scheduled as a background task by the API after the
    webhook has been acknowledged. It never raises: every failure is logged,
    because the marketplace has already been answered.

    Args:
        processor (OrderProcessor): The configured workflow.
        order_id (str): Order id taken from the webhook resource.
        timeout (float): Deadline in seconds; on expiry in-flight lookups are
            cancelled and any pack lock is still marked done.

    Returns:
        ProcessingResult | None: None when the invocation failed or timed out.
    """
    log_prefix = f"[Order: {order_id}]"
    log.info(f"{log_prefix} Inicio de procesamiento.")
    try:
        result = await asyncio.wait_for(processor.process(order_id), timeout=timeout)
        log.info(f"{log_prefix} Procesamiento terminado: {result.status.value} (degradado: {result.degraded}).")
        return result

    except asyncio.TimeoutError:
        log.error(f"{log_prefix} Procesamiento cancelado por timeout ({timeout}s).")

    except TokenUnavailableError as e:
        log.critical(f"{log_prefix} Sin token de Mercado Libre: {e}")

    except httpx.HTTPError as e:
        log.error(f"{log_prefix} Procesamiento abortado por error HTTP: {e}")

    except SQLAlchemyError as e:
        log.critical(f"{log_prefix} Procesamiento abortado: error de almacenamiento de locks. {e}")

    except Exception as e:
        log.critical(f"{log_prefix} Error inesperado en el procesamiento: {e}", exc_info=True)
    return None
