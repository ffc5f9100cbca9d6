from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import StaleWriteError

logger = logging.getLogger(__name__)


@contextmanager
def atomic(db: Session) -> Iterator[Session]:
    """Commit everything done inside the block, or nothing.

    Concurrent weekly-layer writers surface as ``StaleWriteError`` so callers can retry.
    """
    try:
        yield db
        db.commit()
    except StaleDataError as exc:
        db.rollback()
        logger.warning("STALE WRITE | %s", exc)
        raise StaleWriteError() from exc
    except IntegrityError as exc:
        db.rollback()
        if "weekly_timetables" in str(exc.orig):
            logger.warning("WEEKLY LAYER RACE | %s", exc.orig)
            raise StaleWriteError() from exc
        raise
    except Exception:
        db.rollback()
        raise
