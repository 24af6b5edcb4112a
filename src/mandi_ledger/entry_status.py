"""Derivation of an entry's lifecycle status from the linkage of its items."""

from __future__ import annotations

from . import log
from .constants import ZERO, EntryStatus
from .models import Entry


def resolve_status(entry: Entry) -> EntryStatus:
    """Derive the lifecycle status of ``entry``.

    The rules are evaluated in order and the first match wins:

    1. ``Cancelled`` is terminal and only ever set manually.
    2. An entry without items is ``Pending``.
    3. Any item on a supplier invoice makes the whole entry ``Invoiced``.
    4. Every item on a buyer invoice means ``Auctioned``.
    5. Every item carrying a buyer and a rate means ``Draft``.
    6. Otherwise the entry is still ``Pending``.

    Args:
        entry (Entry): Entry whose items should be inspected. It is not
            modified.

    Returns:
        EntryStatus: The derived status.
    """

    if entry.status == EntryStatus.CANCELLED:
        return EntryStatus.CANCELLED
    if not entry.items:
        return EntryStatus.PENDING
    if any(item.supplier_invoice_id is not None for item in entry.items):
        return EntryStatus.INVOICED
    if all(item.invoice_id is not None for item in entry.items):
        return EntryStatus.AUCTIONED
    if all(item.is_sold for item in entry.items):
        return EntryStatus.DRAFT
    return EntryStatus.PENDING


def refresh_entry_status(entry: Entry) -> EntryStatus:
    """Write the derived status and denormalized totals back onto ``entry``."""

    entry.total_quantities = sum((item.quantity for item in entry.items), ZERO)
    entry.total_amount = sum((item.sub_total for item in entry.items), ZERO)
    status = resolve_status(entry)
    if status != entry.status:
        log.debug("Entry '%s' status %s -> %s", entry.serial_number, entry.status.value, status.value)
    entry.status = status
    return status


__all__ = ["resolve_status", "refresh_entry_status"]
