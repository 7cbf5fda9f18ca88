from utils.clock import utcnow
from models.db import db


class LoginChallenge(db.Model):
    """Pending second factor, opened after a successful password check."""

    __tablename__ = "login_challenges"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    kind = db.Column(db.String(16), nullable=False)  # SETUP or VERIFY

    token_hash = db.Column(db.String(128), unique=True, nullable=False, index=True)
    pending_secret = db.Column(db.String(255), nullable=True)  # SETUP only, encrypted

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)

    attempts = db.Column(db.Integer, default=0, nullable=False)
