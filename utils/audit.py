import json
from flask import request, has_request_context
from models import db
from models.audit_log import AuditLog

def log_event(action: str, user_id=None, metadata=None):
    ip = user_agent = None
    if has_request_context():
        ip = request.remote_addr
        user_agent = (request.headers.get("User-Agent") or "")[:255] or None

    row = AuditLog(
        user_id=user_id,
        action=action,
        ip=ip,
        user_agent=user_agent,
        metadata_json=json.dumps(metadata, default=str) if metadata else None
    )
    db.session.add(row)
    db.session.commit()
