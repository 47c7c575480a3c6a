"""Payment allocator for a single sale.

The allocator is created with the frozen grand total of the cart and accepts
a sequence of tenders until the remaining balance reaches zero. Cash always
settles the whole remaining balance in one submission; the surplus handed
over is reported as change and never added to the recorded amount, so the
recorded tenders of a settled payment sum to the total exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from . import log
from .cart import ZERO, MoneyLike, to_decimal, to_money
from .constants import TenderType
from .errors import AlreadyFinalized, InsufficientFunds, InvalidAmount, NotSettled, OverPayment


@dataclass(frozen=True)
class Tender:
    """A single accepted payment submission."""

    tender_type: TenderType
    amount: Decimal
    reference: Optional[str] = None
    tendered: Optional[Decimal] = None

    @property
    def change(self) -> Decimal:
        """Cash handed back to the customer for this tender."""
        if self.tendered is None:
            return ZERO
        return self.tendered - self.amount


@dataclass(frozen=True)
class PaymentSummary:
    """Immutable outcome of :meth:`PaymentAllocator.finalize`."""

    tenders: Tuple[Tender, ...]
    total: Decimal
    total_paid: Decimal
    change: Decimal


def generate_tender_reference(*, sequence: int, when: Optional[datetime] = None) -> str:
    """Generate an external reference for a non-cash tender.

    Returns:
        str: ``REF-{YYYYMMDDHHMMSSffffff}-{sequence}``.
    """
    when = when or datetime.now(UTC)
    return f"REF-{when.strftime('%Y%m%d%H%M%S%f')}-{sequence}"


def _require_whole_units(value: Decimal, tender_type: TenderType) -> Decimal:
    """Return ``value`` unchanged if it is a whole currency amount.

    Raises:
        InvalidAmount: If ``value`` has a fractional part or is too large.
    """
    try:
        whole = to_money(value)
    except ValueError as exc:
        log.warning("Rejected %s tender: amount %s out of range", tender_type.value, value)
        raise InvalidAmount(f"Tender amount out of range: {value}") from exc
    if whole != value:
        log.warning("Rejected %s tender: fractional amount %s", tender_type.value, value)
        raise InvalidAmount(f"Tender amount must be a whole currency amount: {value}")
    return whole


class PaymentAllocator:
    """Track tenders against a fixed total until the sale is settled."""

    def __init__(self, total: MoneyLike) -> None:
        frozen_total = to_money(total)
        if frozen_total < ZERO:
            log.error("Payment total validation failed: %s", frozen_total)
            raise ValueError("Payment total must be zero or positive")
        self._total = frozen_total
        self._tenders: List[Tender] = []
        self._finalized = False

    @property
    def total(self) -> Decimal:
        return self._total

    @property
    def tenders(self) -> Tuple[Tender, ...]:
        return tuple(self._tenders)

    @property
    def total_paid(self) -> Decimal:
        return sum((tender.amount for tender in self._tenders), ZERO)

    @property
    def remaining(self) -> Decimal:
        return self._total - self.total_paid

    @property
    def finalized(self) -> bool:
        return self._finalized

    def is_settled(self) -> bool:
        return self.remaining <= ZERO

    def propose_tender(
        self,
        tender_type: TenderType,
        amount: Optional[MoneyLike] = None,
        *,
        cash_received: Optional[MoneyLike] = None,
        reference: Optional[str] = None,
    ) -> Tender:
        """Validate and record a tender.

        Cash settles the entire remaining balance: ``cash_received`` (or
        ``amount`` when ``cash_received`` is omitted) must cover it, the
        recorded amount equals the remaining balance and the difference is
        exposed as :attr:`Tender.change`. Other tender types record exactly
        ``amount``, which must be positive and no larger than the remaining
        balance. Rejected tenders leave the balance untouched.

        Returns:
            Tender: The recorded tender.

        Raises:
            AlreadyFinalized: If :meth:`finalize` has already run.
            InvalidAmount: If the payment is already settled, an amount is
                missing or not a positive whole currency amount.
            OverPayment: If a non-cash amount exceeds the remaining balance.
            InsufficientFunds: If cash handed over is below the remaining
                balance.
        """
        if self._finalized:
            raise AlreadyFinalized("Payment has already been finalized")
        tender_type = TenderType(tender_type)
        remaining = self.remaining
        if remaining <= ZERO:
            log.warning("Rejected %s tender: payment already settled", tender_type.value)
            raise InvalidAmount("Payment is already settled")

        if tender_type == TenderType.CASH:
            received_raw = cash_received if cash_received is not None else amount
            if received_raw is None:
                raise InvalidAmount("Cash received must be provided")
            received = to_decimal(received_raw)
            if received < remaining:
                log.warning("Rejected cash tender: received %s, remaining %s", received, remaining)
                raise InsufficientFunds(f"Cash received {received} is below the remaining balance {remaining}")
            received = _require_whole_units(received, tender_type)
            tender = Tender(
                tender_type=tender_type,
                amount=remaining,
                reference=reference,
                tendered=received,
            )
        else:
            if amount is None:
                raise InvalidAmount(f"An amount is required for {tender_type.value} tenders")
            value = to_decimal(amount)
            if value <= ZERO:
                log.warning("Rejected %s tender: non-positive amount %s", tender_type.value, value)
                raise InvalidAmount(f"Tender amount must be greater than zero: {value}")
            if value > remaining:
                log.warning("Rejected %s tender: %s exceeds remaining %s", tender_type.value, value, remaining)
                raise OverPayment(f"Tender amount {value} exceeds the remaining balance {remaining}")
            value = _require_whole_units(value, tender_type)
            tender = Tender(
                tender_type=tender_type,
                amount=value,
                reference=reference or generate_tender_reference(sequence=len(self._tenders) + 1),
            )

        self._tenders.append(tender)
        log.info(
            "Accepted %s tender of %s (remaining %s, change %s)",
            tender.tender_type.value,
            tender.amount,
            self.remaining,
            tender.change,
        )
        return tender

    def finalize(self) -> PaymentSummary:
        """Close the payment and return its immutable summary.

        Raises:
            NotSettled: If a balance remains.
            AlreadyFinalized: If called a second time.
        """
        if self._finalized:
            raise AlreadyFinalized("Payment has already been finalized")
        if not self.is_settled():
            raise NotSettled(f"Remaining balance {self.remaining} must be paid before finalizing")
        self._finalized = True
        tenders = self.tenders
        return PaymentSummary(
            tenders=tenders,
            total=self._total,
            total_paid=self.total_paid,
            change=sum((tender.change for tender in tenders), ZERO),
        )
