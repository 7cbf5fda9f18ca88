"""State machine tests for AuthSession: lockout gate, second factor and 2FA reset."""
from datetime import timedelta

import pyotp
import pytest

from security.auth_session import AuthSession
from security.errors import (
    InvalidCode,
    InvalidOrExpired,
    MissingCaptcha,
    NotEnabled,
    NotFound,
    RateLimited,
    ServiceError,
)
from security.outcomes import (
    Authenticated,
    Locked,
    LoginAttemptState,
    LoginStep,
    NeedsSetup,
    NeedsVerification,
    Rejected,
)
from security.tokens import hash_token

CLIENT = "10.0.0.7"
PASSWORD = "s3cret-Passw0rd"
CAPTCHA = "captcha-ok"
RESET_URL = "https://ciphers.test/2fa-reset"


def _fail(auth, email="officer@ciphers.test", times=1):
    outcome = None
    for _ in range(times):
        outcome = auth.submit_credentials(CLIENT, email, "wrong-password", CAPTCHA)
    return outcome


@pytest.fixture
def officer(directory):
    return directory.add("officer@ciphers.test", PASSWORD)


@pytest.fixture
def enrolled(directory):
    return directory.add("enrolled@ciphers.test", PASSWORD, enabled=True, secret=pyotp.random_base32())


# =============================================================================
# Lockout gate
# =============================================================================

class TestLockoutGate:

    def test_missing_captcha_fails_fast_and_is_not_counted(self, auth, attempts, verifier, officer):
        with pytest.raises(MissingCaptcha):
            auth.submit_credentials(CLIENT, officer.email, PASSWORD, None)
        with pytest.raises(MissingCaptcha):
            auth.submit_credentials(CLIENT, officer.email, PASSWORD, "")

        assert verifier.calls == 0
        assert attempts.state(CLIENT).failed_attempts == 0

    @pytest.mark.parametrize("failures", [1, 2])
    def test_failures_below_threshold_are_rejected(self, auth, attempts, officer, failures):
        outcome = _fail(auth, times=failures)

        assert isinstance(outcome, Rejected)
        assert outcome.attempts_remaining == 3 - failures
        assert outcome.step is LoginStep.CREDENTIALS
        state = attempts.state(CLIENT)
        assert state.failed_attempts == failures
        assert state.lockout_until is None

    def test_third_failure_locks_for_fifteen_minutes(self, auth, attempts, clock, officer):
        outcome = _fail(auth, times=3)

        assert outcome == Locked(900)
        assert outcome.started is True
        assert outcome.step is LoginStep.LOCKED
        assert attempts.state(CLIENT).lockout_until == clock() + timedelta(seconds=900)

    def test_attempt_while_locked_never_reaches_verifier(self, auth, verifier, clock, officer):
        _fail(auth, times=3)
        calls = verifier.calls

        clock.advance(60)
        outcome = auth.submit_credentials(CLIENT, officer.email, PASSWORD, CAPTCHA)

        assert outcome == Locked(840)
        assert outcome.started is False
        assert verifier.calls == calls

    def test_lockout_clears_on_tick_without_login_call(self, auth, attempts, verifier, clock, officer):
        _fail(auth, times=3)
        calls = verifier.calls

        clock.advance(300)
        assert auth.tick(CLIENT) == 600
        assert attempts.state(CLIENT).failed_attempts == 3

        clock.advance(601)
        assert auth.tick(CLIENT) == 0
        state = attempts.state(CLIENT)
        assert state.failed_attempts == 0
        assert state.lockout_until is None
        assert verifier.calls == calls

    def test_last_second_of_lockout_still_reports_locked(self, auth, attempts, clock, officer):
        _fail(auth, times=3)

        clock.advance(899.5)
        status = auth.lockout_status(CLIENT)
        assert status["locked"] is True
        assert status["remaining_seconds"] == 1
        assert auth.submit_credentials(CLIENT, officer.email, PASSWORD, CAPTCHA) == Locked(1)

        clock.advance(0.5)
        status = auth.lockout_status(CLIENT)
        assert (status["locked"], status["remaining_seconds"], status["failed_attempts"]) == (False, 0, 0)
        assert attempts.state(CLIENT).lockout_until is None

    def test_lockout_status_snapshot(self, auth, clock, officer):
        _fail(auth, times=1)
        status = auth.lockout_status(CLIENT)
        assert status == {
            "step": "CREDENTIALS",
            "locked": False,
            "remaining_seconds": 0,
            "failed_attempts": 1,
            "attempts_remaining": 2,
        }

        _fail(auth, times=2)
        clock.advance(10)
        status = auth.lockout_status(CLIENT)
        assert status["locked"] is True
        assert status["step"] == "LOCKED"
        assert status["remaining_seconds"] == 890
        assert status["attempts_remaining"] == 0

    @pytest.mark.parametrize("error", [ServiceError("backend down"), RateLimited(30)])
    def test_verifier_errors_never_change_the_counter(self, auth, attempts, verifier, officer, error):
        _fail(auth, times=2)
        verifier.fail_with = error

        with pytest.raises(type(error)):
            auth.submit_credentials(CLIENT, officer.email, "wrong-password", CAPTCHA)

        assert attempts.state(CLIENT).failed_attempts == 2
        assert attempts.state(CLIENT).lockout_until is None

    def test_password_success_alone_keeps_the_counter(self, auth, attempts, officer):
        _fail(auth, times=2)

        outcome = auth.submit_credentials(CLIENT, officer.email, PASSWORD, CAPTCHA)

        assert isinstance(outcome, NeedsSetup)
        assert attempts.state(CLIENT).failed_attempts == 2


# =============================================================================
# Second factor
# =============================================================================

class TestSecondFactor:

    def test_unenrolled_user_needs_setup(self, auth, officer):
        outcome = auth.submit_credentials(CLIENT, officer.email, PASSWORD, CAPTCHA)

        assert isinstance(outcome, NeedsSetup)
        assert outcome.user_id == officer.id
        assert outcome.step is LoginStep.TWO_FACTOR_SETUP
        assert outcome.provisioning_uri.startswith("otpauth://totp/")
        assert "issuer=CRIMS" in outcome.provisioning_uri
        assert outcome.secret not in repr(outcome)

    def test_enrolled_user_needs_verification(self, auth, enrolled):
        outcome = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)

        assert isinstance(outcome, NeedsVerification)
        assert outcome.secret == enrolled.two_factor_secret
        assert outcome.step is LoginStep.TWO_FACTOR_VERIFY

    def test_setup_enrolls_and_authenticates(self, auth, attempts, directory, sessions, clock, officer):
        _fail(auth, times=2)
        pending = auth.submit_credentials(CLIENT, officer.email, PASSWORD, CAPTCHA)

        outcome = auth.complete_two_factor_setup(
            CLIENT, pending.challenge_token, pyotp.TOTP(pending.secret).now()
        )

        assert isinstance(outcome, Authenticated)
        assert outcome.profile == {
            "id": officer.id,
            "name": "Officer Cruz",
            "email": officer.email,
            "role": "OFFICER",
        }
        assert sessions.active == {outcome.session_token: officer.id}
        assert attempts.state(CLIENT) == LoginAttemptState()
        record = directory.get(officer.id)
        assert record.two_factor_enabled is True
        assert record.two_factor_secret == pending.secret
        assert directory.logins[officer.id] == clock()

    def test_verify_clears_counter_and_lockout(self, auth, attempts, clock, enrolled):
        pending = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)
        attempts.save(CLIENT, LoginAttemptState(failed_attempts=2, lockout_until=clock() + timedelta(minutes=5)))

        outcome = auth.complete_two_factor_verify(
            CLIENT, pending.challenge_token, pyotp.TOTP(enrolled.two_factor_secret).now()
        )

        assert isinstance(outcome, Authenticated)
        state = attempts.state(CLIENT)
        assert state.failed_attempts == 0
        assert state.lockout_until is None

    def test_wrong_code_can_be_retried(self, auth, attempts, enrolled):
        _fail(auth, email=enrolled.email, times=1)
        pending = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)

        for bad in ("000000", "12345", "abcdef", None):
            with pytest.raises(InvalidCode):
                auth.complete_two_factor_verify(CLIENT, pending.challenge_token, bad)

        # code guesses never touch the password counter
        assert attempts.state(CLIENT).failed_attempts == 1

        outcome = auth.complete_two_factor_verify(
            CLIENT, pending.challenge_token, pyotp.TOTP(enrolled.two_factor_secret).now()
        )
        assert isinstance(outcome, Authenticated)

    def test_optional_code_attempt_cap(self, verifier, directory, attempts, challenges, sessions, clock, enrolled):
        auth = AuthSession(
            verifier, directory, attempts, challenges, sessions, clock=clock, max_code_attempts=2
        )
        pending = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)

        for _ in range(2):
            with pytest.raises(InvalidCode):
                auth.complete_two_factor_verify(CLIENT, pending.challenge_token, "000000")

        with pytest.raises(InvalidOrExpired):
            auth.complete_two_factor_verify(
                CLIENT, pending.challenge_token, pyotp.TOTP(enrolled.two_factor_secret).now()
            )

    def test_challenge_expires(self, auth, clock, enrolled):
        pending = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)
        clock.advance(301)

        with pytest.raises(InvalidOrExpired):
            auth.complete_two_factor_verify(
                CLIENT, pending.challenge_token, pyotp.TOTP(enrolled.two_factor_secret).now()
            )

    def test_challenge_kind_must_match(self, auth, officer):
        pending = auth.submit_credentials(CLIENT, officer.email, PASSWORD, CAPTCHA)

        with pytest.raises(InvalidOrExpired):
            auth.complete_two_factor_verify(CLIENT, pending.challenge_token, pyotp.TOTP(pending.secret).now())

    def test_challenge_is_single_use(self, auth, enrolled):
        pending = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)
        code = pyotp.TOTP(enrolled.two_factor_secret).now()
        auth.complete_two_factor_verify(CLIENT, pending.challenge_token, code)

        with pytest.raises(InvalidOrExpired):
            auth.complete_two_factor_verify(CLIENT, pending.challenge_token, code)

    def test_cancel_returns_to_credentials_and_keeps_counter(self, auth, attempts, officer):
        _fail(auth, times=2)
        pending = auth.submit_credentials(CLIENT, officer.email, PASSWORD, CAPTCHA)

        assert auth.cancel_two_factor(pending.challenge_token) is LoginStep.CREDENTIALS
        assert attempts.state(CLIENT).failed_attempts == 2
        with pytest.raises(InvalidOrExpired):
            auth.complete_two_factor_setup(CLIENT, pending.challenge_token, pyotp.TOTP(pending.secret).now())

    def test_login_rotates_sessions(self, auth, sessions, enrolled):
        first = sessions.create(enrolled.id)
        pending = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)
        outcome = auth.complete_two_factor_verify(
            CLIENT, pending.challenge_token, pyotp.TOTP(enrolled.two_factor_secret).now()
        )

        assert first not in sessions.active
        assert outcome.session_token in sessions.active


# =============================================================================
# Two-factor reset
# =============================================================================

class TestTwoFactorReset:

    def test_request_issues_token_for_two_hours(self, auth, directory, verifier, clock, enrolled):
        requested = auth.request_two_factor_reset(enrolled.email, CAPTCHA, RESET_URL)

        record = directory.get(enrolled.id)
        assert requested.expires_at == clock() + timedelta(seconds=7200)
        assert record.reset_expires == clock() + timedelta(seconds=7200)
        email, link, allow_new_user = verifier.sent_links[-1]
        assert email == enrolled.email
        assert link.startswith(RESET_URL + "?token=")
        assert allow_new_user is False
        # only the hash is kept
        assert record.reset_token_hash == hash_token(verifier.last_reset_token())

    def test_request_needs_captcha(self, auth, verifier, enrolled):
        with pytest.raises(MissingCaptcha):
            auth.request_two_factor_reset(enrolled.email, None, RESET_URL)
        assert verifier.sent_links == []

    def test_request_for_unknown_email(self, auth, verifier):
        with pytest.raises(NotFound):
            auth.request_two_factor_reset("nobody@ciphers.test", CAPTCHA, RESET_URL)
        assert verifier.sent_links == []

    def test_request_without_enrollment(self, auth, directory, officer):
        with pytest.raises(NotEnabled):
            auth.request_two_factor_reset(officer.email, CAPTCHA, RESET_URL)
        assert directory.get(officer.id).reset_token_hash is None

    def test_second_request_replaces_first_token(self, auth, verifier, enrolled):
        auth.request_two_factor_reset(enrolled.email, CAPTCHA, RESET_URL)
        first = verifier.last_reset_token()
        auth.request_two_factor_reset(enrolled.email, CAPTCHA, RESET_URL)
        second = verifier.last_reset_token()

        with pytest.raises(InvalidOrExpired):
            auth.consume_two_factor_reset(first)
        assert auth.consume_two_factor_reset(second).user_id == enrolled.id

    def test_expired_token_is_refused_and_cleared(self, auth, directory, verifier, clock, enrolled):
        auth.request_two_factor_reset(enrolled.email, CAPTCHA, RESET_URL)
        token = verifier.last_reset_token()
        clock.advance(7201)

        with pytest.raises(InvalidOrExpired):
            auth.consume_two_factor_reset(token)

        record = directory.get(enrolled.id)
        assert record.reset_token_hash is None
        assert record.reset_expires is None
        assert record.two_factor_enabled is True

    def test_checking_an_expired_token_writes_nothing(self, auth, directory, verifier, clock, enrolled):
        auth.request_two_factor_reset(enrolled.email, CAPTCHA, RESET_URL)
        token = verifier.last_reset_token()
        assert auth.check_two_factor_reset(token).email == enrolled.email

        clock.advance(7201)
        with pytest.raises(InvalidOrExpired):
            auth.check_two_factor_reset(token)

        record = directory.get(enrolled.id)
        assert record.reset_token_hash == hash_token(token)
        assert record.reset_expires is not None

    @pytest.mark.parametrize("token", [None, "", "not-a-real-token"])
    def test_unknown_token_is_refused(self, auth, token):
        with pytest.raises(InvalidOrExpired):
            auth.consume_two_factor_reset(token)

    def test_consume_then_disable_clears_all_fields(self, auth, directory, verifier, sessions, clock, enrolled):
        live = sessions.create(enrolled.id)
        auth.request_two_factor_reset(enrolled.email, CAPTCHA, RESET_URL)
        clock.advance(7199)

        grant = auth.consume_two_factor_reset(verifier.last_reset_token())
        auth.disable_two_factor(grant.user_id)

        record = directory.get(enrolled.id)
        assert record.two_factor_enabled is False
        assert record.two_factor_secret is None
        assert record.reset_token_hash is None
        assert record.reset_expires is None
        assert live not in sessions.active

    def test_open_verify_challenge_dies_with_reset(self, auth, verifier, enrolled):
        pending = auth.submit_credentials(CLIENT, enrolled.email, PASSWORD, CAPTCHA)
        auth.request_two_factor_reset(enrolled.email, CAPTCHA, RESET_URL)
        auth.disable_two_factor(auth.consume_two_factor_reset(verifier.last_reset_token()).user_id)

        with pytest.raises(InvalidOrExpired):
            auth.complete_two_factor_verify(
                CLIENT, pending.challenge_token, pyotp.TOTP(enrolled.two_factor_secret).now()
            )

    def test_enroll_disable_reenroll_matches_fresh_account(self, auth, directory, verifier, officer):
        fresh = directory.add("fresh@ciphers.test", PASSWORD)

        def enroll(user):
            pending = auth.submit_credentials(CLIENT, user.email, PASSWORD, CAPTCHA)
            auth.complete_two_factor_setup(CLIENT, pending.challenge_token, pyotp.TOTP(pending.secret).now())

        enroll(officer)
        auth.request_two_factor_reset(officer.email, CAPTCHA, RESET_URL)
        auth.disable_two_factor(auth.consume_two_factor_reset(verifier.last_reset_token()).user_id)
        enroll(officer)
        enroll(fresh)

        def shape(record):
            return (record.two_factor_enabled, record.two_factor_secret is not None,
                    record.reset_token_hash, record.reset_expires)

        assert shape(directory.get(officer.id)) == shape(directory.get(fresh.id)) == (True, True, None, None)


# =============================================================================
# Scenario and session end
# =============================================================================

@pytest.mark.parametrize("enabled, expected", [(False, NeedsSetup), (True, NeedsVerification)])
def test_lockout_then_recovery_scenario(directory, verifier, attempts, challenges, sessions, clock, enabled, expected):
    directory.add("a@x.com", PASSWORD, enabled=enabled, secret=pyotp.random_base32() if enabled else None)
    auth = AuthSession(verifier, directory, attempts, challenges, sessions, clock=clock)

    outcomes = [auth.submit_credentials(CLIENT, "a@x.com", "nope", CAPTCHA) for _ in range(3)]
    assert outcomes[-1] == Locked(900)

    clock.advance(901)
    outcome = auth.submit_credentials(CLIENT, "a@x.com", PASSWORD, CAPTCHA)

    assert isinstance(outcome, expected)
    assert attempts.state(CLIENT).failed_attempts == 0


def test_logout_records_and_revokes(auth, directory, sessions, clock, officer):
    token = sessions.create(officer.id)

    auth.logout(token, officer.id)

    assert token not in sessions.active
    assert directory.logouts[officer.id] == clock()
