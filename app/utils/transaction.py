from contextlib import contextmanager

from app.extensions import db


@contextmanager
def atomic():
    """Single commit point; anything raised inside rolls the whole unit back."""
    try:
        yield db.session
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
