"""Exception taxonomy for the till.

Every condition listed here is local and recoverable: the caller re-prompts
the cashier and re-submits corrected input.
"""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, user, or transaction is unknown."""


class OutOfStock(BusinessRuleViolation):
    """Raised when committing a sale would take stock below zero."""


class InsufficientFunds(BusinessRuleViolation):
    """Raised when cash handed over does not cover the remaining balance."""


class InvalidAmount(BusinessRuleViolation):
    """Raised when a tender amount is not acceptable for the current balance."""


class OverPayment(InvalidAmount):
    """Raised when a non-cash tender exceeds the remaining balance."""


class NotSettled(BusinessRuleViolation):
    """Raised when finalizing a payment that still has a balance due."""


class AlreadyFinalized(BusinessRuleViolation):
    """Raised when a payment session is finalized a second time."""


class InvalidSaleState(BusinessRuleViolation):
    """Raised when a sale operation is not allowed in the current state."""


__all__ = [
    "BusinessRuleViolation",
    "MissingReferenceError",
    "OutOfStock",
    "InsufficientFunds",
    "InvalidAmount",
    "OverPayment",
    "NotSettled",
    "AlreadyFinalized",
    "InvalidSaleState",
]
