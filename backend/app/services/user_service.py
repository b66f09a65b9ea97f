"""User rows are never created explicitly; the first goal a user writes creates one."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.models.user import User

logger = logging.getLogger(__name__)


def get_or_create_user(db: Session, user_id: UUID) -> User:
    """Return the user row for ``user_id``, inserting it when missing.

    Call this before adding anything else to the session: losing an insert race
    rolls the session back.
    """
    existing = db.get(User, user_id)
    if existing is not None:
        return existing

    db.add(User(id=user_id))
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        logger.info("User %s was created concurrently; reusing it", user_id)
        existing = db.get(User, user_id)
        if existing is None:
            raise
        return existing
    return db.get(User, user_id)
