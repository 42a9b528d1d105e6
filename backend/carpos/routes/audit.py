# Overview: Flask API routes for the audit trail; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify

from ..services import audit_service
from carpos.time_utils import parse_iso_datetime
from ..decorators import require_actor

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- start_date/end_date filtering is inclusive on occurred_at.
"""

audit_bp = Blueprint("audit", __name__, url_prefix="/api")


@audit_bp.get("/shops/<int:shop_id>/audit-events")
@require_actor
def list_audit_events_route(shop_id: int):
    limit = request.args.get("limit", default=100, type=int)
    limit = max(1, min(limit, 500))

    try:
        start_dt = parse_iso_datetime(request.args.get("start_date"))
        end_dt = parse_iso_datetime(request.args.get("end_date"))
    except ValueError:
        return jsonify({"error": "start_date and end_date must be ISO-8601 datetimes", "code": "ValidationError"}), 400

    cursor_raw = request.args.get("cursor")
    cursor = None
    if cursor_raw:
        try:
            cursor_parts = cursor_raw.split("|")
            cursor = (parse_iso_datetime(cursor_parts[0]), int(cursor_parts[1]))
        except (ValueError, IndexError):
            return jsonify({"error": "cursor must be in format <ISO-8601>|<id>", "code": "ValidationError"}), 400
        if cursor[0] is None:
            return jsonify({"error": "cursor must be in format <ISO-8601>|<id>", "code": "ValidationError"}), 400

    rows = audit_service.list_events(
        shop_id,
        event_type=request.args.get("event_type"),
        start=start_dt,
        end=end_dt,
        cursor=cursor,
        limit=limit,
    )

    next_cursor = None
    if len(rows) == limit:
        last = rows[-1]
        # cursor keeps microseconds so it compares equal to occurred_at
        next_cursor = f"{last.occurred_at.isoformat()}Z|{last.id}"

    return jsonify({
        "items": [r.to_dict() for r in rows],
        "next_cursor": next_cursor,
        "limit": limit,
    }), 200
