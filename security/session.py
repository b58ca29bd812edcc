import hashlib
import secrets
from datetime import datetime, timedelta
from flask import request, current_app

from models import db
from models.session import StaffSession


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _client_ip() -> str:
    return request.headers.get("X-Forwarded-For", request.remote_addr) or "unknown"


def create_session(user_id: int) -> str:
    """Open a session for a staff login and return the raw cookie token."""
    raw_token = secrets.token_urlsafe(32)
    now = datetime.utcnow()

    row = StaffSession(
        user_id=user_id,
        token_hash=_hash_token(raw_token),
        created_at=now,
        last_seen_at=now,
        expires_at=now + timedelta(seconds=current_app.config.get("SESSION_LIFETIME_SECONDS", 36000)),
        ip=_client_ip(),
        user_agent=(request.headers.get("User-Agent") or "")[:255],
    )
    db.session.add(row)
    db.session.commit()
    return raw_token


def _lookup(raw_token):
    if not raw_token:
        return None
    return StaffSession.query.filter_by(token_hash=_hash_token(raw_token)).first()


def get_session_from_request():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "hotel_session")
    sess = _lookup(request.cookies.get(cookie_name))
    if sess is None:
        return None

    now = datetime.utcnow()
    if not sess.is_live(now, current_app.config.get("IDLE_TIMEOUT_SECONDS", 1800)):
        return None

    # sliding idle window
    sess.last_seen_at = now
    db.session.commit()
    return sess


def revoke_session(raw_token: str) -> bool:
    sess = _lookup(raw_token)
    if sess is None or sess.revoked:
        return False
    sess.revoked_at = datetime.utcnow()
    db.session.commit()
    return True
