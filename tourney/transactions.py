from contextlib import contextmanager
from sqlalchemy.exc import IntegrityError

from .errors import Conflict
from .models import db


@contextmanager
def atomic(conflict_message: str = "Request conflicts with a concurrent change, please retry"):
    """
    Commit the enclosed writes as one unit or roll all of them back.

    A unique/check constraint firing at commit means a concurrent request won
    the race for the same slot; it surfaces as ``Conflict``.
    """
    try:
        yield db.session
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict(conflict_message) from e
    except Exception:
        db.session.rollback()
        raise
