# Overview: Service-layer operations for the payment method ledger; encapsulates business logic and database work.

"""
Payment Method Ledger Service

WHY: Every movement of money through a payment method (sales, refunds,
cash deposits and withdrawals, purchase payments, corrections) is one
immutable, balance-chained entry. The balance shown to cashiers is a cache
of that log and is reconciled from it.

LEDGER INVARIANTS:
- Entries are only ever inserted; corrections are ADJUSTMENT entries.
- balance_after = balance_before + amount for every entry.
- Entries of one method form a gap-free chain: sequence n+1 starts where
  sequence n ended.
- current_balance_cents == sum(amount_cents) == tail.balance_after_cents.

CONCURRENCY:
- All writers of one method are serialized: process-local entity lock, plus
  SELECT ... FOR UPDATE on databases that honor it, plus the unique
  (payment_method_id, sequence) constraint and the optimistic version column
  as the last line of defence. Losers of a race are retried.
- Sufficiency checks read the tail of the log inside the write transaction,
  never the cache.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import PaymentMethod, PaymentMethodTransaction, Shift
from ..models.payments import (
    METHOD_STATUS_ACTIVE,
    TRANSACTION_TYPES,
    TXN_ADJUSTMENT,
    TXN_DEPOSIT,
    TXN_PURCHASE,
    TXN_REFUND,
    TXN_SALE,
    TXN_WITHDRAWAL,
)
from ..validation import InsufficientFunds, NotFoundError, StateError, ValidationError
from carpos.time_utils import utcnow
from .audit_service import record_event
from .concurrency import entity_lock, lock_for_update, run_with_retry


class InvalidAmount(ValidationError):
    """Raised when an amount has the wrong sign or magnitude for its type."""


class PaymentMethodNotFound(NotFoundError):
    """Raised when a payment method id does not exist."""


class PaymentMethodInactive(StateError):
    """Raised when posting to a disabled payment method."""


INFLOW_TYPES = {TXN_SALE, TXN_DEPOSIT}
OUTFLOW_TYPES = {TXN_REFUND, TXN_WITHDRAWAL, TXN_PURCHASE}

# Outflows that may never take a balance below zero
NO_OVERDRAFT_TYPES = {TXN_WITHDRAWAL, TXN_PURCHASE}


@dataclass
class ReconciliationReport:
    payment_method_id: int
    cached_balance_cents: int
    ledger_sum_cents: int
    tail_balance_cents: int
    transaction_count: int
    chain_breaks: list[int] = field(default_factory=list)
    repaired: bool = False

    @property
    def is_consistent(self) -> bool:
        return (
            not self.chain_breaks
            and self.cached_balance_cents == self.ledger_sum_cents == self.tail_balance_cents
        )

    def to_dict(self) -> dict:
        return {
            "payment_method_id": self.payment_method_id,
            "cached_balance_cents": self.cached_balance_cents,
            "ledger_sum_cents": self.ledger_sum_cents,
            "tail_balance_cents": self.tail_balance_cents,
            "transaction_count": self.transaction_count,
            "chain_breaks": self.chain_breaks,
            "is_consistent": self.is_consistent,
            "repaired": self.repaired,
        }


def payment_method_lock(*payment_method_ids: int):
    """Entity lock for one or more payment methods; hold it until commit."""
    return entity_lock(*[("payment_method", pm_id) for pm_id in payment_method_ids])


def signed_amount(transaction_type: str, amount_cents: int) -> int:
    """
    Apply the sign convention of a transaction type to a caller amount.

    SALE/DEPOSIT: positive magnitude in, stored positive.
    REFUND/WITHDRAWAL/PURCHASE: positive magnitude in, stored negative.
    ADJUSTMENT: signed, non-zero, stored as given.
    """
    if transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Invalid transaction type: {transaction_type}. Must be one of {list(TRANSACTION_TYPES)}")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidAmount("amount must be an integer number of cents")

    if transaction_type == TXN_ADJUSTMENT:
        if amount_cents == 0:
            raise InvalidAmount("Adjustment amount cannot be zero")
        return amount_cents

    if amount_cents <= 0:
        raise InvalidAmount(f"{transaction_type.lower()} amount must be positive")

    if transaction_type in INFLOW_TYPES:
        return amount_cents
    return -amount_cents


def _tail(payment_method_id: int) -> Optional[PaymentMethodTransaction]:
    return (
        db.session.query(PaymentMethodTransaction)
        .filter(PaymentMethodTransaction.payment_method_id == payment_method_id)
        .order_by(PaymentMethodTransaction.sequence.desc())
        .first()
    )


def _ledger_sum(payment_method_id: int) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(PaymentMethodTransaction.amount_cents), 0))
        .filter(PaymentMethodTransaction.payment_method_id == payment_method_id)
        .scalar()
    )
    return int(total or 0)


def get_payment_method(payment_method_id: int) -> PaymentMethod:
    method = db.session.get(PaymentMethod, payment_method_id)
    if not method:
        raise PaymentMethodNotFound(f"Payment method {payment_method_id} not found")
    return method


def _append_locked(
    payment_method_id: int,
    transaction_type: str,
    signed_cents: int,
    *,
    note: str | None,
    actor_id: int | None,
    shift_id: int | None,
    order_id: int | None,
) -> PaymentMethodTransaction:
    """Append one entry. Caller holds the payment method lock and owns the commit."""
    method = lock_for_update(db.session.query(PaymentMethod).filter_by(id=payment_method_id)).first()
    if not method:
        raise PaymentMethodNotFound(f"Payment method {payment_method_id} not found")
    if method.status != METHOD_STATUS_ACTIVE:
        raise PaymentMethodInactive(f"Payment method {method.display_name} is inactive")

    tail = _tail(payment_method_id)
    balance_before = tail.balance_after_cents if tail else 0
    next_sequence = (tail.sequence if tail else 0) + 1

    if balance_before != method.current_balance_cents:
        current_app.logger.warning(
            "Payment method %s cache drift: cached=%s ledger=%s; using ledger",
            payment_method_id, method.current_balance_cents, balance_before,
        )

    balance_after = balance_before + signed_cents
    if transaction_type in NO_OVERDRAFT_TYPES and balance_after < 0:
        raise InsufficientFunds(
            f"Insufficient funds on {method.display_name}: balance {balance_before/100:.2f}, "
            f"requested {-signed_cents/100:.2f}",
            details={
                "payment_method_id": payment_method_id,
                "balance_cents": balance_before,
                "requested_cents": -signed_cents,
            },
        )

    txn = PaymentMethodTransaction(
        payment_method_id=payment_method_id,
        sequence=next_sequence,
        transaction_type=transaction_type,
        amount_cents=signed_cents,
        balance_before_cents=balance_before,
        balance_after_cents=balance_after,
        note=(note[:255] if note else None),
        created_at=utcnow(),
        created_by_user_id=actor_id,
        shift_id=shift_id,
        order_id=order_id,
    )
    db.session.add(txn)

    method.current_balance_cents = balance_after
    method.last_sequence = next_sequence
    db.session.flush()

    return txn


def post_transaction(
    payment_method_id: int,
    transaction_type: str,
    amount_cents: int,
    *,
    note: str | None = None,
    actor_id: int | None = None,
    shift_id: int | None = None,
    order_id: int | None = None,
    commit: bool = True,
) -> PaymentMethodTransaction:
    """
    Append a ledger entry and move the cached balance with it.

    Args:
        payment_method_id: Method to post against
        transaction_type: One of TRANSACTION_TYPES
        amount_cents: Magnitude in cents (signed for ADJUSTMENT only)
        commit: When False the entry is flushed into the caller's
            transaction. The caller must then hold payment_method_lock()
            until it commits, so the write stays serialized.

    Raises:
        InvalidAmount: Wrong sign or zero amount
        InsufficientFunds: Outflow would overdraw the method
        PaymentMethodNotFound / PaymentMethodInactive
    """
    signed = signed_amount(transaction_type, amount_cents)

    if not commit:
        with payment_method_lock(payment_method_id):
            return _append_locked(
                payment_method_id, transaction_type, signed,
                note=note, actor_id=actor_id, shift_id=shift_id, order_id=order_id,
            )

    def _op():
        with payment_method_lock(payment_method_id):
            try:
                txn = _append_locked(
                    payment_method_id, transaction_type, signed,
                    note=note, actor_id=actor_id, shift_id=shift_id, order_id=order_id,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return txn

    return run_with_retry(_op, retry_on=(IntegrityError,))


def _check_shift_link(shift_id: int | None) -> None:
    if shift_id is None:
        return
    shift = db.session.get(Shift, shift_id)
    if not shift:
        raise NotFoundError(f"Shift {shift_id} not found")
    if shift.is_closed:
        raise StateError(f"Shift {shift_id} is closed")


def _post_manual(
    payment_method_id: int,
    transaction_type: str,
    amount_cents: int,
    *,
    note: str | None,
    actor_id: int | None,
    shift_id: int | None,
) -> PaymentMethodTransaction:
    signed = signed_amount(transaction_type, amount_cents)
    _check_shift_link(shift_id)

    def _op():
        with payment_method_lock(payment_method_id):
            try:
                txn = _append_locked(
                    payment_method_id, transaction_type, signed,
                    note=note, actor_id=actor_id, shift_id=shift_id, order_id=None,
                )
                record_event(
                    shop_id=txn.payment_method.shop_id,
                    event_type=f"payment_method.{transaction_type.lower()}",
                    entity_type="payment_method_transaction",
                    entity_id=txn.id,
                    actor_user_id=actor_id,
                    shift_id=shift_id,
                    payment_method_id=payment_method_id,
                    occurred_at=txn.created_at,
                    note=note,
                )
                db.session.commit()
            except Exception:
                db.session.rollback()
                raise
            return txn

    return run_with_retry(_op, retry_on=(IntegrityError,))


def deposit(payment_method_id: int, amount_cents: int, *, note: str | None = None,
            actor_id: int | None = None, shift_id: int | None = None) -> PaymentMethodTransaction:
    """Put money into a method (e.g. float added to the cash drawer)."""
    return _post_manual(payment_method_id, TXN_DEPOSIT, amount_cents,
                        note=note, actor_id=actor_id, shift_id=shift_id)


def withdraw(payment_method_id: int, amount_cents: int, *, note: str | None = None,
             actor_id: int | None = None, shift_id: int | None = None) -> PaymentMethodTransaction:
    """Take money out of a method. Never overdraws."""
    return _post_manual(payment_method_id, TXN_WITHDRAWAL, amount_cents,
                        note=note, actor_id=actor_id, shift_id=shift_id)


def pay_purchase(payment_method_id: int, amount_cents: int, *, note: str | None = None,
                 actor_id: int | None = None) -> PaymentMethodTransaction:
    """Pay a supplier purchase out of a method. Never overdraws."""
    return _post_manual(payment_method_id, TXN_PURCHASE, amount_cents,
                        note=note, actor_id=actor_id, shift_id=None)


def adjust(payment_method_id: int, amount_cents: int, *, note: str | None,
           actor_id: int | None = None) -> PaymentMethodTransaction:
    """Signed correction entry; a reason is mandatory."""
    if not note or not note.strip():
        raise ValidationError("note is required for adjustments")
    return _post_manual(payment_method_id, TXN_ADJUSTMENT, amount_cents,
                        note=note, actor_id=actor_id, shift_id=None)


def _repair_cache(payment_method_id: int) -> int:
    def _op():
        with payment_method_lock(payment_method_id):
            method = lock_for_update(db.session.query(PaymentMethod).filter_by(id=payment_method_id)).first()
            tail = _tail(payment_method_id)
            method.current_balance_cents = _ledger_sum(payment_method_id)
            method.last_sequence = tail.sequence if tail else 0
            db.session.commit()
            return method.current_balance_cents

    return run_with_retry(_op)


def get_balance(payment_method_id: int) -> int:
    """
    Reconciled balance in cents.

    Serves the cache when it matches the tail of the log; otherwise rebuilds
    it from the log before answering.
    """
    method = get_payment_method(payment_method_id)
    tail = _tail(payment_method_id)
    tail_balance = tail.balance_after_cents if tail else 0
    tail_sequence = tail.sequence if tail else 0

    if method.current_balance_cents == tail_balance and method.last_sequence == tail_sequence:
        return method.current_balance_cents

    current_app.logger.warning(
        "Payment method %s balance drift detected (cached=%s, ledger tail=%s); rebuilding from log",
        payment_method_id, method.current_balance_cents, tail_balance,
    )
    return _repair_cache(payment_method_id)


def reconcile(payment_method_id: int, *, fix: bool = False) -> ReconciliationReport:
    """
    Replay the whole log of a method and verify every ledger invariant.

    With fix=True a wrong cache is rebuilt from the log. Broken chains are
    only reported; they are corrected with ADJUSTMENT entries by a person.
    """
    method = get_payment_method(payment_method_id)

    rows = (
        db.session.query(PaymentMethodTransaction)
        .filter(PaymentMethodTransaction.payment_method_id == payment_method_id)
        .order_by(PaymentMethodTransaction.sequence.asc())
        .yield_per(500)
    )

    running = 0
    count = 0
    breaks: list[int] = []
    expected_sequence = 1
    for txn in rows:
        count += 1
        if (
            txn.sequence != expected_sequence
            or txn.balance_before_cents != running
            or txn.balance_after_cents != txn.balance_before_cents + txn.amount_cents
        ):
            breaks.append(txn.sequence)
        running += txn.amount_cents
        expected_sequence = txn.sequence + 1

    tail = _tail(payment_method_id)
    report = ReconciliationReport(
        payment_method_id=payment_method_id,
        cached_balance_cents=method.current_balance_cents,
        ledger_sum_cents=running,
        tail_balance_cents=tail.balance_after_cents if tail else 0,
        transaction_count=count,
        chain_breaks=breaks,
    )

    if fix and report.cached_balance_cents != report.ledger_sum_cents:
        current_app.logger.warning(
            "Repairing payment method %s cache: %s -> %s",
            payment_method_id, report.cached_balance_cents, report.ledger_sum_cents,
        )
        _repair_cache(payment_method_id)
        report.repaired = True

    return report


def list_transactions(
    payment_method_id: int,
    *,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    transaction_type: str | None = None,
    cursor: int | None = None,
    limit: int = 50,
) -> tuple[list[PaymentMethodTransaction], int | None]:
    """
    Transactions of a method, newest first.

    The cursor is the sequence of the last row of the previous page; pages
    are stable while new entries arrive because sequences only grow.

    Returns:
        (items, next_cursor) where next_cursor is None on the last page
    """
    get_payment_method(payment_method_id)

    if transaction_type is not None and transaction_type not in TRANSACTION_TYPES:
        raise ValidationError(f"Invalid transaction type: {transaction_type}")

    q = db.session.query(PaymentMethodTransaction).filter(
        PaymentMethodTransaction.payment_method_id == payment_method_id
    )
    if start is not None:
        q = q.filter(PaymentMethodTransaction.created_at >= start)
    if end is not None:
        q = q.filter(PaymentMethodTransaction.created_at <= end)
    if transaction_type is not None:
        q = q.filter(PaymentMethodTransaction.transaction_type == transaction_type)
    if cursor is not None:
        q = q.filter(PaymentMethodTransaction.sequence < cursor)

    rows = q.order_by(PaymentMethodTransaction.sequence.desc()).limit(limit + 1).all()

    next_cursor = None
    if len(rows) > limit:
        rows = rows[:limit]
        next_cursor = rows[-1].sequence
    return rows, next_cursor


def list_order_transactions(order_id: int) -> list[PaymentMethodTransaction]:
    return (
        db.session.query(PaymentMethodTransaction)
        .filter(PaymentMethodTransaction.order_id == order_id)
        .order_by(PaymentMethodTransaction.id.asc())
        .all()
    )
