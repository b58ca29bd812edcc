import json
import logging
from decimal import Decimal

from flask import request, has_request_context
from models import db
from models.audit_log import AuditLog
from utils.auth_context import current_user_id

logger = logging.getLogger("audit")


def _json_default(value):
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def log_event(action: str, user_id=None, entity=None, entity_id=None, metadata=None):
    """Persist one audit row in its own commit.

    Called after the business transaction has committed or rolled back, so a
    rejected payment or booking still leaves a trace. ``user_id`` defaults to
    the logged-in staff member.
    """
    ip = None
    user_agent = None
    if has_request_context():
        ip = request.headers.get("X-Forwarded-For", request.remote_addr)
        user_agent = (request.headers.get("User-Agent") or "")[:255] or None
        if user_id is None:
            user_id = current_user_id()

    row = AuditLog(
        user_id=user_id,
        action=action,
        entity=entity,
        entity_id=str(entity_id) if entity_id is not None else None,
        ip=ip,
        user_agent=user_agent,
        metadata_json=json.dumps(metadata, default=_json_default, sort_keys=True) if metadata else None,
    )
    db.session.add(row)
    db.session.commit()

    logger.info("%s user=%s %s=%s", action, user_id, entity or "-", entity_id if entity_id is not None else "-")
