import json

from flask import Blueprint, request, jsonify, current_app, g

from security.csrf import issue_csrf_token, clear_csrf_token
from security.factory import build_auth_session
from security.outcomes import Locked, Rejected, NeedsSetup, NeedsVerification, LoginStep
from security.client_key import login_client_key
from security import totp
from utils.audit import log_event
from utils.auth_context import login_required
from utils.roles import primary_role


auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def format_remaining(seconds: int) -> str:
    minutes, secs = divmod(max(int(seconds), 0), 60)
    return f"{minutes}:{secs:02d}"


def set_session_cookies(resp, outcome):
    """Persist the session token and the display-safe profile after a completed login."""
    cfg = current_app.config
    secure = cfg.get("SESSION_COOKIE_SECURE", False)
    samesite = cfg.get("SESSION_COOKIE_SAMESITE", "Lax")
    max_age = cfg.get("SESSION_LIFETIME_SECONDS", 8 * 60 * 60)

    resp.set_cookie(
        cfg.get("AUTH_COOKIE_NAME", "ciphers_session"),
        outcome.session_token,
        httponly=True,
        secure=secure,
        samesite=samesite,
        max_age=max_age,
        path="/",
    )
    resp.set_cookie(
        cfg.get("USER_DATA_COOKIE_NAME", "user_data"),
        json.dumps(outcome.profile, separators=(",", ":")),
        httponly=False,  # read by the client for display only
        secure=secure,
        samesite=samesite,
        max_age=max_age,
        path="/",
    )
    return issue_csrf_token(resp)


def clear_session_cookies(resp):
    cfg = current_app.config
    resp.delete_cookie(cfg.get("AUTH_COOKIE_NAME", "ciphers_session"), path="/")
    resp.delete_cookie(cfg.get("USER_DATA_COOKIE_NAME", "user_data"), path="/")
    return clear_csrf_token(resp)


def _locked_response(outcome: Locked):
    return jsonify(
        step=outcome.step.value,
        error=f"Too many failed attempts. Login is disabled for {format_remaining(outcome.remaining_seconds)}.",
        retry_after_seconds=outcome.remaining_seconds,
    ), 429


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    password = data.get("password") or ""
    captcha_token = data.get("captcha_token")

    auth = build_auth_session()
    outcome = auth.submit_credentials(login_client_key(), email, password, captcha_token)

    if isinstance(outcome, Locked):
        action = "LOGIN_LOCKOUT_STARTED" if outcome.started else "LOGIN_LOCKED"
        log_event(action, metadata={"email": email, "seconds_left": outcome.remaining_seconds})
        return _locked_response(outcome)

    if isinstance(outcome, Rejected):
        log_event("LOGIN_FAIL", metadata={"email": email, "attempts_remaining": outcome.attempts_remaining})
        noun = "attempt" if outcome.attempts_remaining == 1 else "attempts"
        return jsonify(
            step=outcome.step.value,
            error=f"{outcome.reason}. {outcome.attempts_remaining} {noun} remaining.",
            attempts_remaining=outcome.attempts_remaining,
        ), 401

    log_event("LOGIN_PASSWORD_OK", user_id=outcome.user_id, metadata={"step": outcome.step.value})

    if isinstance(outcome, NeedsSetup):
        return jsonify(
            step=outcome.step.value,
            challenge_token=outcome.challenge_token,
            secret=outcome.secret,
            otpauth_uri=outcome.provisioning_uri,
            qr_code=totp.qr_code_data_uri(outcome.provisioning_uri),
            message="Scan the QR code with your authenticator app, then enter the 6-digit code.",
        ), 200

    if isinstance(outcome, NeedsVerification):
        return jsonify(
            step=outcome.step.value,
            challenge_token=outcome.challenge_token,
            message="Enter the 6-digit code from your authenticator app.",
        ), 200

    raise TypeError(f"unexpected login outcome {outcome!r}")


@auth_bp.get("/lockout")
def lockout():
    # Polled by the login form once a second to drive its countdown
    return jsonify(build_auth_session().lockout_status(login_client_key())), 200


@auth_bp.get("/me")
@login_required
def me():
    return jsonify(
        id=g.user.id,
        name=g.user.name,
        email=g.user.email,
        role=primary_role(g.user.roles),
        two_factor_enabled=g.user.two_factor_enabled,
    ), 200


@auth_bp.post("/logout")
@login_required
def logout():
    cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "ciphers_session")
    raw_token = request.cookies.get(cookie_name)

    build_auth_session().logout(raw_token, g.user.id)
    log_event("LOGOUT", user_id=g.user.id)

    resp = jsonify(step=LoginStep.CREDENTIALS.value, message="Logged out")
    return clear_session_cookies(resp), 200
