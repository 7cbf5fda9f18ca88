from utils.clock import utcnow
from models.db import db

class IpRateLimit(db.Model):
    """Fixed-window request counter used by the credential verifier."""

    __tablename__ = "ip_rate_limits"

    id = db.Column(db.Integer, primary_key=True)
    ip = db.Column(db.String(64), nullable=False, index=True)
    scope = db.Column(db.String(32), nullable=False, default="LOGIN")

    window_start = db.Column(db.DateTime, nullable=False)
    count = db.Column(db.Integer, default=0, nullable=False)

    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (db.UniqueConstraint("ip", "scope", name="uq_ip_rate_limits_ip_scope"),)
