from utils.clock import utcnow
from models.db import db

class LoginAttempt(db.Model):
    __tablename__ = "login_attempts"

    id = db.Column(db.Integer, primary_key=True)

    # One row per client (IP); the counter follows the client, not the email typed
    client_key = db.Column(db.String(64), unique=True, nullable=False, index=True)
    last_email = db.Column(db.String(255), nullable=True)

    fail_count = db.Column(db.Integer, default=0, nullable=False)
    last_fail_at = db.Column(db.DateTime, nullable=True)
    locked_until = db.Column(db.DateTime, nullable=True)

    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)
