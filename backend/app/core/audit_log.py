from __future__ import annotations

import json

from fastapi import Request
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.audit import AttemptEvent, AttemptEventType


def _request_id(request: Request | None) -> str | None:
    rid = getattr(getattr(request, "state", None), "request_id", None)
    rid = str(rid or "").strip()
    return rid or None


def _client_ip(request: Request | None) -> str | None:
    if request is None:
        return None
    if bool(getattr(settings, "trust_proxy_headers", False)):
        xri = str(request.headers.get("x-real-ip") or "").strip()
        if xri:
            return xri

        xff = str(request.headers.get("x-forwarded-for") or "")
        if xff:
            ip = xff.split(",")[0].strip()
            if ip:
                return ip
    if request.client and request.client.host:
        return request.client.host
    return None


def record_attempt_event(
    db: Session,
    *,
    attempt_id,
    event_type: AttemptEventType,
    actor_user_id=None,
    meta: dict | str | None = None,
    request: Request | None = None,
) -> None:
    if isinstance(meta, dict):
        meta_str = json.dumps(meta, ensure_ascii=False, default=str)
    elif isinstance(meta, str):
        meta_str = meta
    else:
        meta_str = None

    db.add(
        AttemptEvent(
            attempt_id=attempt_id,
            actor_user_id=actor_user_id,
            type=event_type,
            meta=meta_str,
            request_id=_request_id(request),
            ip=_client_ip(request),
        )
    )
