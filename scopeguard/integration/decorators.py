from __future__ import annotations

from collections.abc import Callable

from scopeguard.context import Action

REQUIRED_PERMISSIONS_ATTR = "__scopeguard_required_permissions__"
ROW_FILTERS_ATTR = "__scopeguard_row_filters__"


def require_permission(business_object: str, action: Action | str) -> Callable:
    """
    Declare a permission a route needs.

    The decorator does not check anything itself. It attaches metadata that
    the global ``enforce_security`` dependency reads after routing. Stack it
    to require several permissions.
    """

    required = (business_object, Action(action))

    def decorator(fn: Callable) -> Callable:
        existing = list(getattr(fn, REQUIRED_PERMISSIONS_ATTR, []))
        setattr(fn, REQUIRED_PERMISSIONS_ATTR, [*existing, required])
        return fn

    return decorator


def apply_row_filter(business_object: str, operation: Action | str = Action.READ) -> Callable:
    """
    Scope the route's ORM queries on ``business_object`` to the caller's visible rows.

    The compiled filter is stored on ``request.state.row_filters`` and applied
    by the ``do_orm_execute`` hook to mapped classes declaring
    ``__business_object__``.
    """

    def decorator(fn: Callable) -> Callable:
        existing = dict(getattr(fn, ROW_FILTERS_ATTR, {}))
        existing[business_object] = Action(operation)
        setattr(fn, ROW_FILTERS_ATTR, existing)
        return fn

    return decorator
