"""Shared pytest fixtures for the CIPHERS auth backend."""
import os
import sys

import pytest

# Add project root to path
_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, _PROJECT_ROOT)

from app import create_app  # noqa: E402
from config import Config  # noqa: E402
from models import db  # noqa: E402
from models.user import Role, User  # noqa: E402
from security.password import hash_password  # noqa: E402
from utils.seed import seed_roles  # noqa: E402

from tests.fakes import (  # noqa: E402
    FakeClock,
    FakeVerifier,
    InMemoryAttempts,
    InMemoryChallenges,
    InMemoryDirectory,
    InMemorySessions,
)

PASSWORD = "Correct-Horse-42"


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SEED_ROLES_ON_STARTUP = False
    CAPTCHA_ENABLED = False
    BCRYPT_ROUNDS = 4
    TWO_FACTOR_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="
    TWO_FACTOR_RESET_URL = "https://ciphers.test/2fa-reset"
    SMTP_HOST = "smtp.test"
    SMTP_FROM_EMAIL = "noreply@ciphers.test"


# =============================================================================
# Flask application fixtures
# =============================================================================

@pytest.fixture
def app():
    app = create_app(TestingConfig)
    with app.app_context():
        db.create_all()
        seed_roles()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """Create a staff account directly in the database."""

    def _make(email="officer@ciphers.test", password=PASSWORD, name="Officer Cruz", role="OFFICER"):
        user = User(email=email, name=name, password_hash=hash_password(password))
        role_row = Role.query.filter_by(name=role).first()
        user.roles.append(role_row)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


# =============================================================================
# State machine fixtures (no database)
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def directory():
    return InMemoryDirectory()


@pytest.fixture
def verifier(directory):
    return FakeVerifier(directory)


@pytest.fixture
def attempts():
    return InMemoryAttempts()


@pytest.fixture
def challenges():
    return InMemoryChallenges()


@pytest.fixture
def sessions():
    return InMemorySessions()


@pytest.fixture
def auth(verifier, directory, attempts, challenges, sessions, clock):
    from security.auth_session import AuthSession

    session = AuthSession(verifier, directory, attempts, challenges, sessions, clock=clock)
    yield session
    session.cancel_countdowns()


@pytest.fixture
def password():
    return PASSWORD
