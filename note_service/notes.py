"""
notes.py — Composition of the Order Note

This module renders allocation entries into the compact note written to the
marketplace order, and guards the write with the "[AUTO]" idempotency tag.

Note layout:
    • One line per assignment: "<abbrev>: <product>[ xN] + <product>[ xN] ..."
    • More than nine distinct products: the largest group collapses to
      "<abbrev>: Restante"
    • Optional trailing lines: "(<zone>)" for self-service shipments and
      "(TOC)" for repeat buyers
    • Always prefixed with "[AUTO] " and capped at 300 characters
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional

import httpx

from .allocation import AllocationEntry
from .text_utils import remove_diacritics

log = logging.getLogger(__name__)

AUTO_TAG = "[AUTO]"
MAX_NOTE_LENGTH = 300
MAX_DETAILED_PRODUCTS = 9
REPEAT_BUYER_TAG = "(TOC)"
REMAINING_LABEL = "Restante"

_SHORT_LABELS = {
    "sin asignacion": "SA",
    "sin stock": "SS",
}


def is_auto_note(note: Optional[str]) -> bool:
    if not note or not note.strip():
        return False
    return note.startswith(AUTO_TAG)


def contains_auto_note(notes: Optional[Iterable[str]]) -> bool:
    if not notes:
        return False
    return any(is_auto_note(n) for n in notes)


def ensure_auto_prefix(text: Optional[str]) -> str:
    """Prepends "[AUTO] " unless present; a bare "[AUTO]" gets its space."""
    body = text or ""
    if is_auto_note(body):
        if body.startswith(AUTO_TAG + " "):
            return body
        return AUTO_TAG + " " + body[len(AUTO_TAG):]
    return AUTO_TAG + " " + body


def abbreviate_assignment(assignment: Optional[str]) -> str:
    """
    Short label for an assignment name.

    "Sin asignación" -> "SA", "Sin stock" -> "SS" (any case, any accents),
    otherwise the first three characters of the trimmed name.
    """
    if not assignment or not assignment.strip():
        return ""
    trimmed = assignment.strip()
    normalized = remove_diacritics(trimmed).lower()
    if normalized in _SHORT_LABELS:
        return _SHORT_LABELS[normalized]
    return trimmed[:3]


def compact(text: Optional[str]) -> str:
    if not text:
        return ""
    lines = (line.strip() for line in text.split("\n"))
    return "\n".join(line for line in lines if line)


def truncate(text: Optional[str], max_length: int) -> str:
    if not text:
        return ""
    if max_length <= 0:
        return ""
    return text[:max_length]


def build_final_note(body: Optional[str], max_length: int = MAX_NOTE_LENGTH) -> str:
    """
    Compacts, truncates and tags a note body.

    The result never exceeds `max_length` characters and always starts with
    "[AUTO] ".
    """
    header = AUTO_TAG + " "
    available = max(0, max_length - len(header))
    return ensure_auto_prefix(truncate(compact(body), available))


class WriteOutcome(str, Enum):
    WRITTEN = "written"
    ALREADY_ANNOTATED = "already_annotated"
    FAILED = "failed"


class NoteComposer:
    """
    Groups allocation entries and renders them as note text.

    Args:
        max_detailed_products (int): Above this many distinct products, the
            largest assignment group is summarized as "Restante".
        max_length (int): Hard cap of the final note, tag included.
    """

    def __init__(self, max_detailed_products: int = MAX_DETAILED_PRODUCTS, max_length: int = MAX_NOTE_LENGTH):
        self.max_detailed_products = max_detailed_products
        self.max_length = max_length

    @staticmethod
    def group(entries: Iterable[AllocationEntry]) -> Dict[str, Dict[str, int]]:
        """
        Maps assignment name -> {product label: quantity}.

        Both levels keep first-appearance order; repeated (assignment, product)
        pairs are summed. Entries with a blank product label are ignored and
        non-positive quantities count as one unit.
        """
        groups: Dict[str, Dict[str, int]] = {}
        for entry in entries:
            if entry is None:
                continue
            product = entry.product_label or ""
            if not product.strip():
                continue
            quantity = entry.quantity if entry.quantity > 0 else 1
            products = groups.setdefault(entry.assignment_name or "", {})
            products[product] = products.get(product, 0) + quantity
        return groups

    @staticmethod
    def _detail_line(assignment: str, products: Dict[str, int]) -> str:
        parts = [p + (f" x{q}" if q > 1 else "") for p, q in products.items()]
        short = abbreviate_assignment(assignment)
        joined = " + ".join(parts)
        return f"{short}: {joined}" if short else joined

    def grouped_lines(self, entries: Iterable[AllocationEntry]) -> List[str]:
        groups = self.group(entries)
        total_products = sum(len(products) for products in groups.values())

        if total_products <= self.max_detailed_products:
            lines = [self._detail_line(a, p) for a, p in groups.items()]
            return [line for line in lines if line.strip()]

        indexed = [(len(products), index, name) for index, (name, products) in enumerate(groups.items())]
        indexed.sort()
        lines = []
        for position, (_, _, name) in enumerate(indexed):
            if position == len(indexed) - 1:
                short = abbreviate_assignment(name)
                line = f"{short}: {REMAINING_LABEL}" if short else REMAINING_LABEL
            else:
                line = self._detail_line(name, groups[name])
            if line.strip():
                lines.append(line)
        return lines

    def compose_body(self, entries: Iterable[AllocationEntry], zone: Optional[str] = None,
                     repeat_buyer: bool = False) -> str:
        lines = self.grouped_lines(entries)
        if zone and zone.strip():
            lines.append(f"({zone.strip()})")
        if repeat_buyer:
            lines.append(REPEAT_BUYER_TAG)
        return "\n".join(lines)

    def build_final_note(self, body: Optional[str]) -> str:
        return build_final_note(body, self.max_length)

    async def write_once(self, marketplace, order_id: str, note: str, access_token: str) -> WriteOutcome:
        """
        Writes `note` unless the order already carries an "[AUTO]" note.

        A failed read of the existing notes does not block the write; the
        marketplace is the last judge in that case.
        """
        try:
            existing = await marketplace.fetch_existing_notes(order_id, access_token)
            if contains_auto_note(existing):
                log.info(f"[Order: {order_id}] Ya existe una nota [AUTO]. No se escribe de nuevo.")
                return WriteOutcome.ALREADY_ANNOTATED
        except httpx.HTTPError as e:
            log.warning(f"[Order: {order_id}] No se pudieron leer las notas existentes: {e}")

        written = await marketplace.upsert_note(order_id, note, access_token)
        if not written:
            log.error(f"[Order: {order_id}] La API rechazó la escritura de la nota.")
            return WriteOutcome.FAILED
        log.info(f"[Order: {order_id}] Nota escrita: {note!r}")
        return WriteOutcome.WRITTEN
