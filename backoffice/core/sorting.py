"""Ordering helper shared by the repositories' list queries."""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import asc, desc
from sqlalchemy.orm import Query

from backoffice.core.database import Base


def apply_order_by(
    query: Query,  # type: ignore[type-arg]
    model: type[Base],
    order_by: str | None,
    default_field: str = "created_at",
    default_direction: str = "desc",
    allowed_fields: Iterable[str] | None = None,
) -> Query:  # type: ignore[type-arg]
    """Order *query* by a ``"field:direction"`` string such as ``"valid_until:asc"``.

    Unknown fields (or fields outside ``allowed_fields`` when given) fall back to
    ``default_field``; a known field without a valid direction sorts ascending.
    """
    field = default_field
    direction = default_direction

    if order_by:
        candidate_field, _, candidate_direction = order_by.partition(":")
        allowed = set(allowed_fields) if allowed_fields is not None else None
        if hasattr(model, candidate_field) and (allowed is None or candidate_field in allowed):
            field = candidate_field
            direction = candidate_direction if candidate_direction in ("asc", "desc") else "asc"

    order_func = asc if direction == "asc" else desc
    return query.order_by(order_func(getattr(model, field)))
