from contextlib import contextmanager
from threading import Event
from typing import Optional

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from waypoint import db
from waypoint.errors import IntegrityFailure, OperationCancelled


@contextmanager
def transaction(cancel: Optional[Event] = None):
    """Run a unit of work on the request session.

    Commits on a clean exit unless ``cancel`` has been set, in which case the
    work is rolled back and ``OperationCancelled`` is raised. Any exception
    inside the block rolls back before propagating.
    """
    session = db.session
    if cancel is not None and cancel.is_set():
        raise OperationCancelled()
    try:
        yield session
        if cancel is not None and cancel.is_set():
            raise OperationCancelled()
    except BaseException:
        session.rollback()
        raise
    try:
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        current_app.logger.error(f"[tx-commit] commit failed: {exc!r}")
        raise IntegrityFailure(f"transaction commit failed: {exc}") from exc
