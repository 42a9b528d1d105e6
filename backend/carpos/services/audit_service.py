# Overview: Service-layer operations for the audit trail; append-only, no business logic.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_

from ..extensions import db
from ..models import AuditEvent
from carpos.time_utils import utcnow
"""
Audit trail invariants

- Append-only log of shift, order and payment method events.
- Events are written inside the same DB transaction as the change they record
  (flush only; the caller commits).
- occurred_at is business time; created_at is system time (DB default).
"""


def record_event(
    *,
    shop_id: int,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    register_id: int | None = None,
    shift_id: int | None = None,
    order_id: int | None = None,
    payment_method_id: int | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
) -> AuditEvent:
    ev = AuditEvent(
        shop_id=shop_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        register_id=register_id,
        shift_id=shift_id,
        order_id=order_id,
        payment_method_id=payment_method_id,
        occurred_at=occurred_at or utcnow(),
        note=(note[:255] if note else None),
    )
    db.session.add(ev)
    db.session.flush()
    return ev


def list_events(
    shop_id: int,
    *,
    event_type: str | None = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    cursor: tuple[datetime, int] | None = None,
    limit: int = 100,
) -> list[AuditEvent]:
    """Newest first; cursor is the (occurred_at, id) of the last row already seen."""
    q = db.session.query(AuditEvent).filter(AuditEvent.shop_id == shop_id)

    if event_type:
        q = q.filter(AuditEvent.event_type == event_type)
    if start is not None:
        q = q.filter(AuditEvent.occurred_at >= start)
    if end is not None:
        q = q.filter(AuditEvent.occurred_at <= end)
    if cursor is not None:
        cursor_dt, cursor_id = cursor
        q = q.filter(
            or_(
                AuditEvent.occurred_at < cursor_dt,
                and_(AuditEvent.occurred_at == cursor_dt, AuditEvent.id < cursor_id),
            )
        )

    return (
        q.order_by(AuditEvent.occurred_at.desc(), AuditEvent.id.desc())
        .limit(limit)
        .all()
    )
