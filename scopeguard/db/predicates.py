from __future__ import annotations

import logging

from sqlalchemy import ColumnElement, and_, false, inspect, or_, true

from scopeguard.security.predicates import And, FieldEquals, FieldIn, MatchAll, MatchNone, Or, Predicate

logger = logging.getLogger(__name__)


def to_sql(predicate: Predicate, model: type) -> ColumnElement[bool]:
    """
    Translate a row predicate into a SQLAlchemy criterion on ``model``.

    A field that is not a mapped column of ``model`` matches nothing.
    """
    if isinstance(predicate, MatchAll):
        return true()
    if isinstance(predicate, MatchNone):
        return false()
    if isinstance(predicate, (FieldEquals, FieldIn)):
        column = _column(model, predicate.field)
        if column is None:
            return false()
        if isinstance(predicate, FieldEquals):
            return column == predicate.value
        return column.in_(list(predicate.values))
    if isinstance(predicate, And):
        return and_(*(to_sql(c, model) for c in predicate.children))
    if isinstance(predicate, Or):
        return or_(*(to_sql(c, model) for c in predicate.children))
    raise TypeError(f"Unsupported predicate: {predicate!r}")


def _column(model: type, name: str):
    # Mapper.columns is keyed by attribute name.
    if name not in inspect(model).columns:
        logger.warning("Row filter field not mapped model=%s field=%s", model.__name__, name)
        return None
    return getattr(model, name)
