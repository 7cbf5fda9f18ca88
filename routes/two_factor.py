from flask import Blueprint, request, jsonify, current_app

from routes.auth import set_session_cookies, clear_session_cookies
from security.errors import AuthError, InvalidCode, NotEnabled, NotFound
from security.factory import build_auth_session
from security.client_key import login_client_key
from utils.audit import log_event


two_factor_bp = Blueprint("two_factor", __name__, url_prefix="/auth/2fa")

RESET_SENT_MESSAGE = (
    "Reset link sent! Please check your email and follow the instructions to reset your 2FA."
)


def _challenge_payload():
    data = request.get_json(silent=True) or {}
    code = "".join(ch for ch in str(data.get("code") or "") if ch.isdigit())
    return data.get("challenge_token"), code


def _complete(kind: str, complete):
    challenge_token, code = _challenge_payload()
    try:
        outcome = complete(login_client_key(), challenge_token, code)
    except InvalidCode:
        log_event("TWO_FACTOR_CODE_FAIL", metadata={"kind": kind})
        raise

    action = "TWO_FACTOR_SETUP_COMPLETE" if kind == "SETUP" else "TWO_FACTOR_VERIFY_OK"
    log_event(action, user_id=outcome.user_id)
    log_event("LOGIN_SUCCESS", user_id=outcome.user_id)

    resp = jsonify(step=outcome.step.value, message="Login OK", user=outcome.profile)
    return set_session_cookies(resp, outcome), 200


@two_factor_bp.post("/setup")
def setup():
    return _complete("SETUP", build_auth_session().complete_two_factor_setup)


@two_factor_bp.post("/verify")
def verify():
    return _complete("VERIFY", build_auth_session().complete_two_factor_verify)


@two_factor_bp.post("/cancel")
def cancel():
    challenge_token, _ = _challenge_payload()
    step = build_auth_session().cancel_two_factor(challenge_token)
    return jsonify(step=step.value, message="Back to login"), 200


@two_factor_bp.post("/reset")
def request_reset():
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").strip().lower()
    captcha_token = data.get("captcha_token")

    auth = build_auth_session()
    try:
        requested = auth.request_two_factor_reset(
            email, captcha_token, current_app.config["TWO_FACTOR_RESET_URL"]
        )
    except (NotFound, NotEnabled) as exc:
        log_event("TWO_FACTOR_RESET_REJECTED", metadata={"email": email, "reason": type(exc).__name__})
        if current_app.config.get("TWO_FACTOR_RESET_UNIFORM_RESPONSE", False):
            return jsonify(message=RESET_SENT_MESSAGE), 200
        raise

    log_event(
        "TWO_FACTOR_RESET_REQUESTED",
        user_id=requested.user_id,
        metadata={"expires_at": requested.expires_at.isoformat()},
    )
    return jsonify(message=RESET_SENT_MESSAGE), 200


@two_factor_bp.get("/reset/<token>")
def check_reset(token):
    try:
        grant = build_auth_session().check_two_factor_reset(token)
    except AuthError:
        log_event("TWO_FACTOR_RESET_REJECTED", metadata={"reason": "invalid_or_expired"})
        raise
    return jsonify(
        email=grant.email,
        message=(
            "This will disable two-factor authentication for your account. "
            "You will need to set it up again the next time you log in."
        ),
    ), 200


@two_factor_bp.post("/reset/<token>")
def confirm_reset(token):
    auth = build_auth_session()
    try:
        grant = auth.consume_two_factor_reset(token)
    except AuthError:
        log_event("TWO_FACTOR_RESET_REJECTED", metadata={"reason": "invalid_or_expired"})
        raise

    auth.disable_two_factor(grant.user_id)
    log_event("TWO_FACTOR_DISABLED", user_id=grant.user_id)

    resp = jsonify(message="Two-factor authentication has been reset successfully")
    return clear_session_cookies(resp), 200
