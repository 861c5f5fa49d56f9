"""
Toggle-like / toggle-save and the cached counters that go with them.

Every likeable entity has a join table keyed by (<target>_id, user_id) with
a unique constraint, and a `likes_count` column on the target. Counters are
moved with SQL expressions so two concurrent toggles can't lose an update.
"""

import logging
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _bump(db: Session, target, column: str, delta: int) -> None:
    model = type(target)
    col = getattr(model, column)
    db.query(model).filter(model.id == target.id).update(
        {col: col + delta},
        synchronize_session=False,
    )


def toggle_join_row(
    db: Session,
    join_model,
    target_field: str,
    target,
    user_id: int,
    counter: str | None = "likes_count",
) -> bool:
    """
    Insert the (target, user) row if absent, delete it if present.
    Returns True when the row exists after the call.
    """
    existing = (
        db.query(join_model)
        .filter(
            getattr(join_model, target_field) == target.id,
            join_model.user_id == user_id,
        )
        .first()
    )

    if existing:
        db.delete(existing)
        if counter:
            _bump(db, target, counter, -1)
        active = False
    else:
        db.add(join_model(**{target_field: target.id, "user_id": user_id}))
        if counter:
            _bump(db, target, counter, 1)
        active = True

    try:
        db.commit()
    except IntegrityError:
        # A concurrent request inserted the same row first; it is liked either way.
        db.rollback()
        logger.info(
            "Concurrent toggle collapsed | table=%s | target_id=%s | user_id=%s",
            join_model.__tablename__,
            target.id,
            user_id,
        )
        active = True

    db.refresh(target)
    return active


def toggle_like(db: Session, like_model, target_field: str, target, user_id: int) -> bool:
    return toggle_join_row(db, like_model, target_field, target, user_id, counter="likes_count")


def toggle_save(db: Session, save_model, target_field: str, target, user_id: int) -> bool:
    return toggle_join_row(db, save_model, target_field, target, user_id, counter=None)


def increment_views(db: Session, target) -> None:
    _bump(db, target, "views_count", 1)
    db.commit()
    db.refresh(target)


def ids_marked_by(db: Session, join_model, target_field: str, target_ids, user) -> set[int]:
    """Subset of target_ids the user has a join row for (one query per page)."""
    if user is None or not target_ids:
        return set()
    col = getattr(join_model, target_field)
    rows = (
        db.query(col)
        .filter(col.in_(list(target_ids)), join_model.user_id == user.id)
        .all()
    )
    return {r[0] for r in rows}
