from models.user import User
from security import totp
from security.captcha import verify_captcha
from security.errors import NotFound, RateLimited, ServiceError
from security.outcomes import UserRecord
from security.password import verify_password
from security.rate_limit import check_and_increment_login_rate, client_ip
from utils.emailer import send_email
from utils.roles import primary_role
from utils.storage import service_call


class PasswordCredentialVerifier:
    """
    Checks captcha, the per-IP login rate limit and the bcrypt password.

    The rate limit is enforced here on every call, so the caller's local
    lockout shortcut can never be used to get around it.
    """

    def __init__(self, fernet):
        self.fernet = fernet

    def verify_captcha(self, captcha_proof) -> None:
        verify_captcha(captcha_proof, remote_ip=client_ip())

    def verify(self, email: str, password: str, captcha_proof) -> UserRecord | None:
        self.verify_captcha(captcha_proof)

        with service_call("login rate limit"):
            allowed, retry_after = check_and_increment_login_rate()
        if not allowed:
            raise RateLimited(retry_after)

        email = (email or "").strip().lower()
        with service_call("load user for login"):
            user = User.query.filter_by(email=email).first() if email else None
        if not user or not verify_password(password, user.password_hash):
            return None

        return UserRecord(
            id=user.id,
            email=user.email,
            name=user.name,
            role=primary_role(user.roles),
            two_factor_enabled=user.two_factor_enabled,
            two_factor_secret=totp.decrypt_secret(self.fernet, user.two_factor_secret),
        )

    def send_one_time_login_link(self, email: str, redirect_target: str, allow_new_user: bool = False) -> None:
        if not allow_new_user:
            with service_call("check link recipient"):
                exists = User.query.filter_by(email=email).first() is not None
            if not exists:
                raise NotFound()

        body = (
            "A request was made to reset two-factor authentication for your CIPHERS account.\n\n"
            f"Open this link to continue (valid for 2 hours):\n{redirect_target}\n\n"
            "If you did not request this, you can ignore this email."
        )
        sent, error = send_email(email, "Reset your two-factor authentication", body)
        if not sent:
            raise ServiceError(error)
