import logging
from contextlib import contextmanager

from sqlalchemy.exc import SQLAlchemyError

from models import db
from security.errors import ServiceError

logger = logging.getLogger(__name__)


@contextmanager
def service_call(operation: str):
    """Roll back and surface database failures as ServiceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("%s failed", operation)
        raise ServiceError(str(exc)) from exc
