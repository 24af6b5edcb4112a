"""Exception hierarchy raised by the Mandi Ledger engine."""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced buyer, supplier, entry, invoice, or transaction is unknown."""


class LedgerConsistencyError(RuntimeError):
    """Raised when derived ledger state breaks an arithmetic invariant.

    This signals a programming error rather than bad user input: the payment
    allocator caps every application at the invoice balance, so an invoice
    whose paid amount exceeds its debt can only come from a defect.
    """


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "LedgerConsistencyError",
]
