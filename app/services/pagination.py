from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from math import ceil
from typing import Any

from fastapi import Query
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from app.schemas import PageMeta
from app.settings import get_settings


@dataclass(frozen=True, slots=True)
class PageParams:
    page: int
    limit: int


def page_params(default_limit: int | None = None) -> Callable[..., PageParams]:
    """Query dependency resolving ``page``/``limit``; ``limit`` is capped at ``max_page_size``."""

    def _dependency(
        page: int = Query(default=1, ge=1),
        limit: int | None = Query(default=None, ge=1),
    ) -> PageParams:
        settings = get_settings()
        resolved = limit or default_limit or settings.default_page_size
        return PageParams(page=page, limit=min(resolved, settings.max_page_size))

    return _dependency


def paginate(db: Session, stmt: Select[Any], *, page: int, limit: int) -> tuple[list[Any], PageMeta]:
    page = max(1, page)
    limit = max(1, limit)
    total = db.scalar(select(func.count()).select_from(stmt.order_by(None).subquery())) or 0
    rows = list(db.scalars(stmt.offset((page - 1) * limit).limit(limit)).all())
    return rows, PageMeta(total=total, page=page, limit=limit, pages=ceil(total / limit))
