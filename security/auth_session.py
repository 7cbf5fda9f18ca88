"""
Login, two-factor and lockout state machine.

    Idle --(password ok, 2FA off)--> SetupRequired --(code ok)--> Authenticated
    Idle --(password ok, 2FA on)---> VerifyRequired --(code ok)--> Authenticated
    Idle --(bad password, < max)---> Idle (Rejected)
    Idle --(bad password, == max)--> Locked --(lockout expires)--> Idle
    VerifyRequired --(reset requested)--> ResetRequested
        --(token consumed, 2FA disabled)--> Idle (re-enroll on next login)

AuthSession keeps nothing between calls except the countdowns it owns. The
attempt counter, challenges, enrollment and sessions all live in the
collaborators passed in, so building one per request is fine.

Collaborators:

    verifier    verify(email, password, captcha_proof) -> UserRecord | None
                verify_captcha(captcha_proof)
                send_one_time_login_link(email, redirect_target, allow_new_user=False)
    directory   get(user_id), find_by_email(email), find_by_reset_token(token_hash)
                update_two_factor_fields(user_id, enabled=, secret=, reset_token=, reset_expires=)
                record_login(user_id, at), record_logout(user_id, at)
    attempts    load(client_key), save(client_key, state, email=None), clear(client_key)
    challenges  open(user_id, kind, pending_secret, expires_at) -> token
                get(token), record_failure(token) -> attempts, consume(token)
    sessions    create(user_id) -> token, revoke(token), revoke_all(user_id)

Any collaborator may raise ServiceError; it propagates untouched and never
changes the attempt counter.
"""
from datetime import timedelta
from urllib.parse import urlencode

from security import totp
from security.countdown import LockoutCountdown
from security.errors import InvalidCode, InvalidOrExpired, MissingCaptcha, NotEnabled, NotFound
from security.outcomes import (
    Authenticated,
    ChallengeKind,
    LoginAttemptState,
    LoginStep,
    Locked,
    NeedsSetup,
    NeedsVerification,
    Rejected,
    ResetGrant,
    ResetRequested,
)
from security.tokens import hash_token, new_token
from utils.clock import utcnow


class AuthSession:
    def __init__(
        self,
        verifier,
        directory,
        attempts,
        challenges,
        sessions,
        *,
        clock=utcnow,
        max_attempts: int = 3,
        lockout_seconds: int = 15 * 60,
        challenge_ttl_seconds: int = 300,
        max_code_attempts: int = 0,
        reset_ttl_seconds: int = 2 * 60 * 60,
        issuer: str = "CRIMS",
        valid_window: int = 1,
    ):
        self.verifier = verifier
        self.directory = directory
        self.attempts = attempts
        self.challenges = challenges
        self.sessions = sessions
        self.clock = clock
        self.max_attempts = max_attempts
        self.lockout_seconds = lockout_seconds
        self.challenge_ttl_seconds = challenge_ttl_seconds
        self.max_code_attempts = max_code_attempts
        self.reset_ttl_seconds = reset_ttl_seconds
        self.issuer = issuer
        self.valid_window = valid_window
        self._countdowns = []

    # ------------------------------------------------------------------
    # Lockout gate
    # ------------------------------------------------------------------

    def _load_state(self, client_key: str) -> LoginAttemptState:
        state = self.attempts.load(client_key)
        if state.is_expired(self.clock()):
            self.attempts.clear(client_key)
            return LoginAttemptState()
        return state

    def tick(self, client_key: str) -> int:
        """Remaining lockout seconds, clamped at 0. Clears the lockout once it has run out."""
        return self._load_state(client_key).remaining_seconds(self.clock())

    def lockout_status(self, client_key: str) -> dict:
        state = self._load_state(client_key)
        remaining = state.remaining_seconds(self.clock())
        return {
            "step": (LoginStep.LOCKED if remaining > 0 else LoginStep.CREDENTIALS).value,
            "locked": remaining > 0,
            "remaining_seconds": remaining,
            "failed_attempts": state.failed_attempts,
            "attempts_remaining": max(self.max_attempts - state.failed_attempts, 0),
        }

    def start_countdown(self, client_key: str, on_tick=None, interval: float = 1.0) -> LockoutCountdown:
        countdown = LockoutCountdown(self.tick, client_key, on_tick=on_tick, interval=interval)
        self._countdowns.append(countdown)
        return countdown.start()

    def cancel_countdowns(self) -> None:
        for countdown in self._countdowns:
            countdown.cancel()
        self._countdowns = []

    def submit_credentials(self, client_key: str, email: str, password: str, captcha_proof):
        if not captcha_proof:
            raise MissingCaptcha()

        state = self._load_state(client_key)
        now = self.clock()
        if state.is_locked(now):
            return Locked(max(state.remaining_seconds(now), 1))

        user = self.verifier.verify(email, password, captcha_proof)
        if user is None:
            return self._register_failure(client_key, state, email)

        # The counter is only cleared once the second factor is done too.
        if user.two_factor_enabled and user.two_factor_secret:
            token = self._open_challenge(user.id, ChallengeKind.VERIFY, None)
            return NeedsVerification(user.id, token, user.two_factor_secret)

        secret = totp.generate_secret()
        token = self._open_challenge(user.id, ChallengeKind.SETUP, secret)
        return NeedsSetup(user.id, token, secret, totp.provisioning_uri(secret, user.email, self.issuer))

    def _register_failure(self, client_key: str, state: LoginAttemptState, email: str):
        state.failed_attempts += 1
        if state.failed_attempts >= self.max_attempts:
            state.lockout_until = self.clock() + timedelta(seconds=self.lockout_seconds)
            self.attempts.save(client_key, state, email=email)
            return Locked(self.lockout_seconds, started=True)

        self.attempts.save(client_key, state, email=email)
        return Rejected("Invalid credentials", self.max_attempts - state.failed_attempts)

    # ------------------------------------------------------------------
    # Second factor
    # ------------------------------------------------------------------

    def _open_challenge(self, user_id: int, kind: ChallengeKind, pending_secret):
        expires_at = self.clock() + timedelta(seconds=self.challenge_ttl_seconds)
        return self.challenges.open(user_id, kind, pending_secret, expires_at)

    def _active_challenge(self, challenge_token, kind: ChallengeKind):
        if not challenge_token:
            raise InvalidOrExpired("Your sign-in attempt expired. Please log in again.")
        challenge = self.challenges.get(challenge_token)
        if (
            challenge is None
            or challenge.kind != kind
            or challenge.consumed
            or challenge.expires_at <= self.clock()
        ):
            raise InvalidOrExpired("Your sign-in attempt expired. Please log in again.")
        return challenge

    def _register_code_failure(self, challenge_token: str) -> None:
        attempts = self.challenges.record_failure(challenge_token)
        if self.max_code_attempts and attempts >= self.max_code_attempts:
            self.challenges.consume(challenge_token)

    def complete_two_factor_setup(self, client_key: str, challenge_token, code) -> Authenticated:
        challenge = self._active_challenge(challenge_token, ChallengeKind.SETUP)
        if not totp.verify_code(challenge.pending_secret, code, self.valid_window):
            self._register_code_failure(challenge_token)
            raise InvalidCode()

        self.directory.update_two_factor_fields(
            challenge.user_id, enabled=True, secret=challenge.pending_secret
        )
        return self._authenticate(client_key, challenge_token, challenge.user_id)

    def complete_two_factor_verify(self, client_key: str, challenge_token, code) -> Authenticated:
        challenge = self._active_challenge(challenge_token, ChallengeKind.VERIFY)
        user = self.directory.get(challenge.user_id)
        if user is None or not user.two_factor_enabled:
            # 2FA was reset while this challenge was open
            raise InvalidOrExpired("Your sign-in attempt expired. Please log in again.")

        if not totp.verify_code(user.two_factor_secret, code, self.valid_window):
            self._register_code_failure(challenge_token)
            raise InvalidCode()

        return self._authenticate(client_key, challenge_token, challenge.user_id)

    def cancel_two_factor(self, challenge_token) -> LoginStep:
        """Back to credential entry. The lockout counter is left as it is."""
        if challenge_token:
            self.challenges.consume(challenge_token)
        return LoginStep.CREDENTIALS

    def _authenticate(self, client_key: str, challenge_token: str, user_id: int) -> Authenticated:
        self.challenges.consume(challenge_token)
        self.attempts.clear(client_key)
        self.cancel_countdowns()

        self.directory.record_login(user_id, self.clock())
        user = self.directory.get(user_id)

        # Rotate: one live session per user
        self.sessions.revoke_all(user_id)
        session_token = self.sessions.create(user_id)
        return Authenticated(user_id, session_token, user.profile())

    # ------------------------------------------------------------------
    # Two-factor reset
    # ------------------------------------------------------------------

    def request_two_factor_reset(self, email: str, captcha_proof, reset_url: str) -> ResetRequested:
        if not captcha_proof:
            raise MissingCaptcha()
        self.verifier.verify_captcha(captcha_proof)

        user = self.directory.find_by_email(email)
        if user is None:
            raise NotFound()
        if not user.two_factor_enabled:
            raise NotEnabled()

        raw_token = new_token()
        expires_at = self.clock() + timedelta(seconds=self.reset_ttl_seconds)
        # Last write wins: a second request replaces the previous token.
        self.directory.update_two_factor_fields(
            user.id, reset_token=hash_token(raw_token), reset_expires=expires_at
        )

        separator = "&" if "?" in reset_url else "?"
        link = reset_url + separator + urlencode({"token": raw_token})
        self.verifier.send_one_time_login_link(user.email, link, allow_new_user=False)
        return ResetRequested(user.id, expires_at)

    def _reset_grant(self, access_proof, clear_expired: bool) -> ResetGrant:
        if not access_proof:
            raise InvalidOrExpired()

        user = self.directory.find_by_reset_token(hash_token(access_proof))
        if user is None or user.reset_token_hash is None or user.reset_expires is None:
            raise InvalidOrExpired()

        if user.reset_expires < self.clock():
            if clear_expired:
                self.directory.update_two_factor_fields(user.id, reset_token=None, reset_expires=None)
            raise InvalidOrExpired("Reset link has expired. Please request a new one.")

        return ResetGrant(user.id, user.email)

    def check_two_factor_reset(self, access_proof) -> ResetGrant:
        """Read-only validation of a reset link, for showing whose account it is."""
        return self._reset_grant(access_proof, clear_expired=False)

    def consume_two_factor_reset(self, access_proof) -> ResetGrant:
        """Validate a reset link before acting on it. An expired link is cleared."""
        return self._reset_grant(access_proof, clear_expired=True)

    def disable_two_factor(self, user_id: int) -> None:
        """Clear the whole enrollment in one update and end every session of the user."""
        self.directory.update_two_factor_fields(
            user_id, enabled=False, secret=None, reset_token=None, reset_expires=None
        )
        self.sessions.revoke_all(user_id)

    # ------------------------------------------------------------------

    def logout(self, session_token, user_id=None) -> None:
        self.cancel_countdowns()
        if user_id is not None:
            self.directory.record_logout(user_id, self.clock())
        if session_token:
            self.sessions.revoke(session_token)
