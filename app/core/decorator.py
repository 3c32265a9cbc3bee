import logging
from functools import wraps

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import PersistenceError

logger = logging.getLogger(__name__)


def db_exception(func):
    """
    Convert SQLAlchemy failures raised by a store method into PersistenceError.
    The wrapped method's first argument must own a `db` session, which is
    rolled back before re-raising.
    """

    @wraps(func)
    def wrapper(self, *args, **kwargs):
        try:
            return func(self, *args, **kwargs)
        except IntegrityError as e:
            self.db.rollback()
            logger.error(f"{func.__qualname__}: integrity error: {e.orig}")
            raise PersistenceError("Duplicate entry: already exists") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"{func.__qualname__}: database error: {type(e).__name__}")
            raise PersistenceError() from e

    return wrapper
