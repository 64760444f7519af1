"""Append-only audit trail for logins and catalog mutations."""
from __future__ import annotations

import json
from typing import Any

from flask import g, has_app_context, has_request_context, request
from sqlalchemy.orm import Session

from app.golfpoi.models import AuditEvent, User


def _encode(metadata: dict[str, Any] | None) -> str | None:
    if not metadata:
        return None
    # default=str covers datetimes and Decimals from coordinates.
    return json.dumps(metadata, sort_keys=True, default=str)


def _request_origin() -> tuple[str | None, str | None]:
    request_id = g.get("request_id") if has_app_context() else None
    client_ip = request.remote_addr if has_request_context() else None
    return request_id, client_ip


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """Stage an audit row in ``s``; it commits with the caller's transaction."""
    origin_request_id, client_ip = _request_origin()
    event = AuditEvent(
        request_id=request_id or origin_request_id,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=_encode(metadata),
        client_ip=client_ip,
    )
    s.add(event)
    return event


def event_metadata(event: AuditEvent) -> dict[str, Any]:
    return json.loads(event.metadata_json) if event.metadata_json else {}
