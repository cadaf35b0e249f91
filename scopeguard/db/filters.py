from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session, with_loader_criteria

from scopeguard.db.predicates import to_sql

ROW_FILTERS_KEY = "row_filters"


@event.listens_for(Session, "do_orm_execute")
def _apply_row_filters(execute_state) -> None:
    """
    Transparent row-level scoping.

    ``Session.info["row_filters"]`` maps business object names to compiled
    filters. Any mapped class declaring a matching ``__business_object__`` is
    restricted, so existing query code such as ``db.scalars(select(Model))``
    stays unchanged.
    """

    if not execute_state.is_select:
        return

    row_filters = execute_state.session.info.get(ROW_FILTERS_KEY)
    if not row_filters:
        return

    options = []
    for mapper in execute_state.all_mappers:
        cls = mapper.class_
        business_object = getattr(cls, "__business_object__", None)
        compiled = row_filters.get(business_object) if business_object else None
        if compiled is None:
            continue
        criterion = to_sql(compiled.predicate, cls)
        options.append(with_loader_criteria(cls, criterion, include_aliases=True))

    if options:
        execute_state.statement = execute_state.statement.options(*options)
