from datetime import timedelta
from flask import request, current_app

from models import db
from models.ip_rate_limit import IpRateLimit
from utils.clock import utcnow

def client_ip() -> str:
    # X-Forwarded-For is only honoured through ProxyFix (TRUSTED_PROXY_HOPS)
    return (request.remote_addr or "unknown")[:64]

def check_and_increment_login_rate(scope: str = "LOGIN") -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    Simple fixed window per IP and scope.
    """
    ip = client_ip()
    now = utcnow()

    window_seconds = current_app.config.get("LOGIN_RATE_WINDOW_SECONDS", 60)
    max_requests = current_app.config.get("LOGIN_RATE_MAX_REQUESTS", 15)

    row = IpRateLimit.query.filter_by(ip=ip, scope=scope).first()
    if not row:
        row = IpRateLimit(ip=ip, scope=scope, window_start=now, count=0)
        db.session.add(row)

    window_end = row.window_start + timedelta(seconds=window_seconds)

    # Reset window if expired
    if now >= window_end:
        row.window_start = now
        row.count = 0
        window_end = row.window_start + timedelta(seconds=window_seconds)

    row.count += 1
    db.session.commit()

    if row.count > max_requests:
        retry_after = int((window_end - now).total_seconds())
        return False, max(retry_after, 1)

    return True, 0
